"""Venue and promoter commissions on table bookings.

Each qualifying booking gets one :class:`TableBookingCommission` record that
is recalculated in place until it is locked. The promoter's share is decided
by an ordered list of named rules; the first rule that applies wins.
"""

from __future__ import annotations

import csv
import io
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy import update

from venueledger import db
from venueledger.errors import ConflictError, NotFoundError, ValidationError
from venueledger.models import (
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
    BOOKING_QUALIFYING_STATUSES,
    CommissionContract,
    Event,
    TableBooking,
    TableBookingCommission,
)
from venueledger.services.access import get_event_for
from venueledger.services.commission_rules import TABLE_COMMISSION_FLAT_FEE
from venueledger.utils.activity import log_activity
from venueledger.utils.numeric import (
    ExpressionParsingError,
    coerce_decimal,
    parse_decimal_string,
    quantize_money,
)

SPEND_ACTUAL = "actual"
SPEND_MINIMUM = "minimum"

HUNDRED = Decimal("100")
ZERO = Decimal("0")

LOCKED_COMMISSIONS_MESSAGE = "Event is locked; table commissions cannot change"
LOCKED_SPEND_MESSAGE = "Event is locked; table spend cannot change"

EVENT_LOCK_STRIPES = 64

_event_locks = tuple(threading.Lock() for _ in range(EVENT_LOCK_STRIPES))


def _lock_for(event_id: int) -> threading.Lock:
    return _event_locks[event_id % EVENT_LOCK_STRIPES]


# ----------------------------------------------------------------------
# Promoter rate rules


@dataclass(frozen=True)
class PromoterShare:
    rule: str
    rate: Optional[Decimal]
    amount: Decimal


RuleFn = Callable[[Decimal, Optional[CommissionContract], Any], Optional[PromoterShare]]


def _flat_fee_rule(spend, contract, promoter):
    if contract is None or contract.table_commission_type != TABLE_COMMISSION_FLAT_FEE:
        return None
    fee = coerce_decimal(contract.table_commission_flat_fee, default=ZERO)
    return PromoterShare("flat_fee", None, quantize_money(fee))


def _table_rate_rule(spend, contract, promoter):
    if contract is None or contract.table_commission_rate is None:
        return None
    rate = coerce_decimal(contract.table_commission_rate, default=ZERO)
    return PromoterShare("table_rate", rate, quantize_money(spend * rate / HUNDRED))


def _legacy_rate_rule(spend, contract, promoter):
    rate = None
    if contract is not None and contract.commission_rate is not None:
        rate = coerce_decimal(contract.commission_rate)
    if rate is None and promoter is not None and promoter.commission_rate is not None:
        rate = coerce_decimal(promoter.commission_rate)
    if rate is None:
        return None
    return PromoterShare("legacy_rate", rate, quantize_money(spend * rate / HUNDRED))


def _no_commission_rule(spend, contract, promoter):
    return PromoterShare("none", None, quantize_money(ZERO))


PROMOTER_RATE_RULES: Tuple[Tuple[str, RuleFn], ...] = (
    ("flat_fee", _flat_fee_rule),
    ("table_rate", _table_rate_rule),
    ("legacy_rate", _legacy_rate_rule),
    ("none", _no_commission_rule),
)


def resolve_promoter_share(
    spend: Decimal, contract: Optional[CommissionContract], promoter
) -> PromoterShare:
    """Return the promoter's share from the first rule that applies."""

    for _name, rule in PROMOTER_RATE_RULES:
        share = rule(spend, contract, promoter)
        if share is not None:
            return share
    raise AssertionError("the 'none' rule always applies")


# ----------------------------------------------------------------------
# Per-booking calculation


@dataclass(frozen=True)
class BookingCommission:
    booking_id: int
    promoter_id: Optional[int]
    spend_amount: Decimal
    spend_source: str
    venue_commission_rate: Decimal
    venue_commission_amount: Decimal
    promoter: PromoterShare

    def to_columns(self) -> dict:
        return {
            "promoter_id": self.promoter_id,
            "spend_amount": self.spend_amount,
            "spend_source": self.spend_source,
            "promoter_commission_rate": self.promoter.rate,
            "promoter_commission_rule": self.promoter.rule,
            "promoter_commission_amount": self.promoter.amount,
            "venue_commission_rate": self.venue_commission_rate,
            "venue_commission_amount": self.venue_commission_amount,
        }


def booking_spend(booking) -> Tuple[Decimal, str]:
    """Return the spend to commission on and where it came from."""

    if booking.actual_spend is not None:
        return coerce_decimal(booking.actual_spend, default=ZERO), SPEND_ACTUAL
    return coerce_decimal(booking.minimum_spend, default=ZERO), SPEND_MINIMUM


def compute_booking_commission(
    booking, contract: Optional[CommissionContract], venue_rate: Decimal
) -> BookingCommission:
    spend, source = booking_spend(booking)
    if booking.promoter_id is None:
        share = _no_commission_rule(spend, None, None)
    else:
        share = resolve_promoter_share(spend, contract, booking.promoter)
    return BookingCommission(
        booking_id=booking.id,
        promoter_id=booking.promoter_id,
        spend_amount=quantize_money(spend),
        spend_source=source,
        venue_commission_rate=venue_rate,
        venue_commission_amount=quantize_money(spend * venue_rate / HUNDRED),
        promoter=share,
    )


def venue_rate_for(event) -> Decimal:
    if event.venue is not None and event.venue.table_commission_rate is not None:
        return coerce_decimal(event.venue.table_commission_rate)
    default = current_app.config.get("DEFAULT_VENUE_COMMISSION_RATE", 10)
    return Decimal(str(default))


# ----------------------------------------------------------------------
# Operations


def _qualifying_bookings(event_id: int) -> List[TableBooking]:
    return (
        TableBooking.query.filter(
            TableBooking.event_id == event_id,
            TableBooking.status.in_(BOOKING_QUALIFYING_STATUSES),
            TableBooking.closeout_locked.is_(False),
        )
        .order_by(TableBooking.id)
        .all()
    )


def _contracts_by_promoter(event_id: int) -> Dict[int, CommissionContract]:
    return {
        contract.promoter_id: contract
        for contract in CommissionContract.query.filter_by(event_id=event_id)
    }


def _totals(records: Iterable[TableBookingCommission]) -> Dict[str, str]:
    spend = promoter = venue = ZERO
    for record in records:
        spend += record.spend_amount or ZERO
        promoter += record.promoter_commission_amount or ZERO
        venue += record.venue_commission_amount or ZERO
    return {
        "total_spend": str(quantize_money(spend)),
        "total_promoter_commission": str(quantize_money(promoter)),
        "total_venue_commission": str(quantize_money(venue)),
    }


def _hold_unlocked(event_id: int, message: str) -> None:
    """Write-lock the event row, failing if the event was locked meanwhile."""

    result = db.session.execute(
        update(Event)
        .where(Event.id == event_id, Event.locked_at.is_(None))
        .values(id=Event.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError(message)


def _calculate(event) -> Dict[str, Any]:
    venue_rate = venue_rate_for(event)
    contracts = _contracts_by_promoter(event.id)
    existing = {
        record.booking_id: record
        for record in TableBookingCommission.query.filter_by(event_id=event.id)
    }

    processed = created = updated = 0
    touched: List[TableBookingCommission] = []
    now = datetime.utcnow()
    for booking in _qualifying_bookings(event.id):
        record = existing.get(booking.id)
        if record is not None and record.locked:
            continue
        result = compute_booking_commission(
            booking, contracts.get(booking.promoter_id), venue_rate
        )
        if record is None:
            record = TableBookingCommission(
                booking_id=booking.id, event_id=event.id, created_at=now
            )
            db.session.add(record)
            created += 1
        else:
            updated += 1
        for name, value in result.to_columns().items():
            setattr(record, name, value)
        record.updated_at = now
        processed += 1
        touched.append(record)

    _hold_unlocked(event.id, LOCKED_COMMISSIONS_MESSAGE)
    db.session.commit()

    summary: Dict[str, Any] = {
        "processed": processed,
        "created": created,
        "updated": updated,
        "venue_commission_rate": str(venue_rate),
    }
    summary.update(_totals(touched))
    return {
        "summary": summary,
        "commissions": [record.to_dict() for record in touched],
    }


def calculate_table_commissions(event_id: int, user) -> Dict[str, Any]:
    """Create or refresh commission records for every qualifying booking.

    Locked records are left untouched and are not counted.

    Raises:
        NotFoundError: If the event does not exist.
        AuthorizationError: If ``user`` may not manage the event's tables.
        ConflictError: If the event is locked.
    """

    event = get_event_for(user, event_id, tables=True)
    if event.is_locked:
        raise ConflictError(LOCKED_COMMISSIONS_MESSAGE)

    with _lock_for(event.id):
        result = _calculate(event)

    summary = result["summary"]
    current_app.logger.info(
        "Table commissions for event %s: %s processed, %s created, %s updated",
        event.id,
        summary["processed"],
        summary["created"],
        summary["updated"],
    )
    log_activity(
        f"Calculated table commissions for event {event.id} "
        f"({summary['processed']} bookings)",
        user.id,
    )
    return result


def _stored_records(event_id: int) -> List[TableBookingCommission]:
    return (
        TableBookingCommission.query.filter_by(event_id=event_id)
        .order_by(TableBookingCommission.booking_id)
        .all()
    )


def list_table_commissions(event_id: int, user) -> Dict[str, Any]:
    event = get_event_for(user, event_id, tables=True)
    records = _stored_records(event.id)
    summary: Dict[str, Any] = {
        "count": len(records),
        "locked": sum(1 for record in records if record.locked),
        "tables_closeout_at": event.tables_closeout_at.isoformat()
        if event.tables_closeout_at
        else None,
    }
    summary.update(_totals(records))
    return {"summary": summary, "commissions": [r.to_dict() for r in records]}


EXPORT_HEADER = [
    "Booking",
    "Guest",
    "Promoter",
    "Spend",
    "Spend source",
    "Promoter rule",
    "Promoter rate",
    "Promoter commission",
    "Venue rate",
    "Venue commission",
    "Locked",
]


def export_table_commissions_csv(event_id: int, user) -> str:
    event = get_event_for(user, event_id, tables=True)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for record in _stored_records(event.id):
        booking = record.booking
        writer.writerow(
            [
                record.booking_id,
                (booking.guest_name or "") if booking else "",
                record.promoter.name if record.promoter else "",
                f"{record.spend_amount:.2f}",
                record.spend_source,
                record.promoter_commission_rule or "",
                ""
                if record.promoter_commission_rate is None
                else f"{record.promoter_commission_rate:.2f}",
                f"{record.promoter_commission_amount:.2f}",
                f"{record.venue_commission_rate:.2f}",
                f"{record.venue_commission_amount:.2f}",
                "yes" if record.locked else "no",
            ]
        )
    return output.getvalue()


def _is_booking_locked(booking: TableBooking) -> bool:
    if booking.closeout_locked:
        return True
    records = booking.commission
    return any(record.locked for record in records)


def _find_booking(raw_id) -> Optional[TableBooking]:
    try:
        booking_id = int(raw_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(TableBooking, booking_id)


def import_actual_spend(
    event_id: int, user, entries: Iterable[Mapping[str, Any]]
) -> Dict[str, Any]:
    """Record actual spend per booking.

    Each entry is ``{"booking_id": ..., "actual_spend": ...}``. Problems with
    an entry are reported back and do not stop the rest of the import.
    """

    event = get_event_for(user, event_id, tables=True)
    if event.is_locked:
        raise ConflictError(LOCKED_SPEND_MESSAGE)
    if entries is None:
        raise ValidationError("No spend entries were provided")

    updated = 0
    errors: List[Dict[str, Any]] = []
    for index, entry in enumerate(entries):
        booking_id = entry.get("booking_id") if isinstance(entry, Mapping) else None
        booking = _find_booking(booking_id)
        if booking is None or booking.event_id != event.id:
            errors.append({"row": index, "booking_id": booking_id, "error": "Booking not found"})
            continue
        if _is_booking_locked(booking):
            errors.append({"row": index, "booking_id": booking_id, "error": "Booking is locked"})
            continue
        try:
            amount = parse_decimal_string(entry.get("actual_spend"))
        except ExpressionParsingError as exc:
            errors.append({"row": index, "booking_id": booking_id, "error": str(exc)})
            continue
        if amount < 0:
            errors.append(
                {"row": index, "booking_id": booking_id, "error": "Spend cannot be negative"}
            )
            continue
        booking.actual_spend = quantize_money(amount)
        updated += 1

    _hold_unlocked(event.id, LOCKED_SPEND_MESSAGE)
    db.session.commit()
    if updated:
        log_activity(
            f"Imported actual spend for {updated} bookings on event {event.id}",
            user.id,
        )
    return {"updated": updated, "errors": errors}


def lock_table_commissions(event_id: int, user) -> Dict[str, Any]:
    """Refresh and then permanently lock the event's table commissions."""

    event = get_event_for(user, event_id, tables=True)
    with _lock_for(event.id):
        if not event.is_locked:
            _calculate(event)
        now = datetime.utcnow()
        newly_locked = 0
        for record in _stored_records(event.id):
            if not record.locked:
                record.locked = True
                record.locked_at = now
                newly_locked += 1
            if record.booking is not None:
                record.booking.closeout_locked = True
        event.tables_closeout_at = now
        event.tables_closeout_by = user.id
        db.session.commit()

    log_activity(
        f"Locked {newly_locked} table commissions for event {event.id}", user.id
    )
    return list_table_commissions(event.id, user)


def record_paid_booking(booking_id: int, amount) -> TableBooking:
    """Record a payment on a booking.

    A pending booking becomes confirmed; any other status is kept, so a
    cancelled booking stays out of the commission run. The payment is kept
    in ``paid_amount`` and never replaces the booking's spend.
    """

    booking = db.session.get(TableBooking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    if booking.status == BOOKING_PENDING:
        booking.status = BOOKING_CONFIRMED
    paid = coerce_decimal(amount)
    if paid is not None and not _is_booking_locked(booking):
        booking.paid_amount = quantize_money(paid)
    db.session.commit()
    current_app.logger.info(
        "Booking %s recorded as paid (status %s)", booking.id, booking.status
    )
    log_activity(f"Recorded payment for table booking {booking.id}")
    return booking
