"""Promoter notifications and domain events emitted after a closeout."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from flask import current_app
from twilio.base.exceptions import TwilioException

import venueledger
from venueledger import db
from venueledger.models import OutboxEvent
from venueledger.utils.email import SMTPConfigurationError, send_email
from venueledger.utils.sms import SMSConfigurationError, send_sms

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


def statement_url(statement_ref: Optional[str], event_id: int) -> Optional[str]:
    base_url = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    if not statement_ref or not base_url:
        return None
    return f"{base_url}/events/{event_id}/closeout/statement"


def notify_payout_ready(
    promoter, amount: Decimal, event, statement_ref: Optional[str]
) -> str:
    """Tell a promoter their payout is ready; returns sent, failed or skipped."""

    if promoter is None or not (promoter.email or promoter.notify_sms):
        return SKIPPED

    currency = event.currency or current_app.config.get("DEFAULT_CURRENCY", "IDR")
    subject = f"Your payout for {event.name} is ready"
    lines = [
        f"Hi {promoter.name},",
        "",
        f"{event.name} has been closed out.",
        f"Your commission: {currency} {amount:,.2f} (pending payment).",
    ]
    url = statement_url(statement_ref, event.id)
    if url:
        lines.append(f"Statement: {url}")

    delivered = False
    if promoter.email:
        try:
            send_email(promoter.email, subject, "\n".join(lines))
            delivered = True
        except (SMTPConfigurationError, OSError) as exc:
            current_app.logger.warning(
                "Payout email to promoter %s failed: %s", promoter.id, exc
            )
    if promoter.notify_sms and promoter.phone_number:
        try:
            send_sms(
                promoter.phone_number,
                f"{event.name}: your payout of {currency} {amount:,.2f} is ready.",
            )
            delivered = True
        except (SMSConfigurationError, TwilioException) as exc:
            current_app.logger.warning(
                "Payout SMS to promoter %s failed: %s", promoter.id, exc
            )
    return SENT if delivered else FAILED


def emit_domain_event(event_type: str, payload: dict) -> OutboxEvent:
    """Persist a domain event to the outbox and broadcast it to listeners."""

    record = OutboxEvent(event_type=event_type, payload=payload)
    db.session.add(record)
    db.session.commit()
    if venueledger.socketio is not None:
        venueledger.socketio.emit(event_type, payload)
    return record
