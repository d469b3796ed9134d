"""Event closeout: compute promoter payouts once and lock the event.

The closeout state lives on :class:`Event` as ``open -> finalizing -> closed``.
Both transitions are conditional ``UPDATE`` statements checked by row count,
so two concurrent finalize requests can never both claim the same event.
The claim is stamped with ``finalizing_started_at``; a claim older than
``CLOSEOUT_CLAIM_TIMEOUT`` seconds is treated as abandoned and can be taken
over by a retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError

from venueledger import db
from venueledger.errors import (
    BestEffortError,
    ConflictError,
    NotFoundError,
    PersistenceError,
)
from venueledger.models import (
    CLOSEOUT_CLOSED,
    CLOSEOUT_FINALIZING,
    CLOSEOUT_OPEN,
    CommissionContract,
    Event,
    PayoutLine,
    PayoutRun,
    Promoter,
)
from venueledger.services.access import get_event_for
from venueledger.services.checkin_aggregator import (
    attendance_for,
    count_checkins_by_promoter,
    count_event_checkins,
)
from venueledger.services.commission_rules import build_contract, resolve_rules
from venueledger.services.notifications import (
    FAILED,
    emit_domain_event,
    notify_payout_ready,
)
from venueledger.services.payout_calculator import calculate_payout, format_breakdown
from venueledger.services.statements import generate_payout_statement
from venueledger.utils.activity import log_activity
from venueledger.utils.numeric import quantize_money

MESSAGE_WITH_PAYOUTS = "Event closed successfully. Payouts are now pending payment."
MESSAGE_NO_PROMOTERS = (
    "Event closed successfully. No promoters were configured for this event."
)


@dataclass
class CloseoutResult:
    payout_run: PayoutRun
    payout_lines: List[PayoutLine]
    statement_ref: Optional[str]
    message: str
    failed_promoters: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "payout_run": self.payout_run.to_dict(),
            "payout_lines": [line.to_dict() for line in self.payout_lines],
            "statement_ref": self.statement_ref,
            "failed_promoters": self.failed_promoters,
            "message": self.message,
        }


def _currency(event: Event) -> str:
    return event.currency or current_app.config.get("DEFAULT_CURRENCY", "IDR")


def _ensure_unlocked(event: Event) -> None:
    if event.closed_at is not None or event.locked_at is not None:
        raise ConflictError("Event is closed and its commissions are locked")
    if event.closeout_state != CLOSEOUT_OPEN:
        raise ConflictError("Event closeout is in progress")


def _hold_open(event_id: int) -> None:
    """Write-lock the event row before committing changes to its contracts.

    Matches nothing once a closeout has claimed the event; the pending
    changes are then rolled back.
    """

    result = db.session.execute(
        update(Event)
        .where(
            Event.id == event_id,
            Event.closeout_state == CLOSEOUT_OPEN,
            Event.locked_at.is_(None),
        )
        .values(id=Event.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError("Event is closed and its commissions are locked")


# ----------------------------------------------------------------------
# State transitions


def _claim(event_id: int) -> Optional[datetime]:
    """Move the event from open to finalizing; return the claim stamp."""

    now = datetime.utcnow()
    timeout = current_app.config.get("CLOSEOUT_CLAIM_TIMEOUT", 300)
    stale_before = now - timedelta(seconds=timeout)
    result = db.session.execute(
        update(Event)
        .where(
            Event.id == event_id,
            Event.closed_at.is_(None),
            or_(
                Event.closeout_state == CLOSEOUT_OPEN,
                and_(
                    Event.closeout_state == CLOSEOUT_FINALIZING,
                    Event.finalizing_started_at < stale_before,
                ),
            ),
        )
        .values(closeout_state=CLOSEOUT_FINALIZING, finalizing_started_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return now if result.rowcount == 1 else None


def _release_claim(event_id: int, claimed_at: datetime) -> None:
    db.session.execute(
        update(Event)
        .where(
            Event.id == event_id,
            Event.closeout_state == CLOSEOUT_FINALIZING,
            Event.finalizing_started_at == claimed_at,
        )
        .values(closeout_state=CLOSEOUT_OPEN, finalizing_started_at=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def _close(event: Event, claimed_at: datetime, user_id, total_revenue, notes) -> bool:
    now = datetime.utcnow()
    result = db.session.execute(
        update(Event)
        .where(
            Event.id == event.id,
            Event.closeout_state == CLOSEOUT_FINALIZING,
            Event.finalizing_started_at == claimed_at,
        )
        .values(
            closeout_state=CLOSEOUT_CLOSED,
            closed_at=now,
            closed_by=user_id,
            closeout_notes=notes or None,
            total_revenue=total_revenue,
            locked_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ----------------------------------------------------------------------
# Payout lines


def _build_line(run: PayoutRun, contract: CommissionContract, attendance, breakdown, currency):
    audit = breakdown.to_dict()
    audit["actual_count"] = attendance.actual
    audit["manual_checkins_reason"] = contract.manual_checkins_reason
    audit["manual_adjustment_reason"] = contract.manual_adjustment_reason
    audit["summary"] = format_breakdown(breakdown, currency)
    return PayoutLine(
        payout_run_id=run.id,
        promoter_id=contract.promoter_id,
        checkins_count=attendance.effective,
        actual_checkins_count=attendance.actual,
        commission_amount=breakdown.final_amount,
        breakdown=audit,
    )


def _persist_line(run, contract, attendance, breakdown, currency) -> PayoutLine:
    try:
        with db.session.begin_nested():
            line = _build_line(run, contract, attendance, breakdown, currency)
            db.session.add(line)
    except SQLAlchemyError as exc:
        raise PersistenceError(
            f"Could not save payout line for promoter {contract.promoter_id}: {exc}",
            promoter_id=contract.promoter_id,
        ) from exc
    return line


def _log_best_effort(error: BestEffortError) -> None:
    current_app.logger.warning(
        "Closeout %s failed: %s", error.collaborator, error.message
    )


# ----------------------------------------------------------------------
# Operations


def finalize_closeout(
    event_id: int,
    user,
    *,
    total_revenue: Optional[Decimal] = None,
    closeout_notes: Optional[str] = None,
) -> CloseoutResult:
    """Create the payout run for an event and close it permanently.

    Raises:
        NotFoundError: If the event does not exist.
        AuthorizationError: If ``user`` may not close out the event.
        ConflictError: If the event is already closed or being closed.
    """

    event = get_event_for(user, event_id)
    if event.closed_at is not None:
        raise ConflictError("Event is already closed")

    claimed_at = _claim(event.id)
    if claimed_at is None:
        db.session.refresh(event)
        if event.closed_at is not None:
            raise ConflictError("Event is already closed")
        raise ConflictError("Event closeout is already in progress")

    try:
        run, lines, failed, statement_ref = _create_payouts(event, user)
        if not _close(event, claimed_at, user.id, total_revenue, closeout_notes):
            raise ConflictError("Event closeout was taken over by another request")
        db.session.commit()
    except Exception:
        db.session.rollback()
        _release_claim(event.id, claimed_at)
        raise

    log_activity(
        f"Closed out event {event.id} with payout run {run.id} "
        f"({len(lines)} payout lines)",
        user.id,
    )
    _dispatch_side_effects(event, run, lines, statement_ref)

    message = MESSAGE_WITH_PAYOUTS if (lines or failed) else MESSAGE_NO_PROMOTERS
    if failed:
        current_app.logger.warning(
            "Event %s closed without payout lines for promoters %s",
            event.id,
            failed,
        )
    return CloseoutResult(
        payout_run=run,
        payout_lines=lines,
        statement_ref=statement_ref,
        message=message,
        failed_promoters=failed,
    )


def _create_payouts(event: Event, user):
    contracts = (
        CommissionContract.query.filter_by(event_id=event.id)
        .order_by(CommissionContract.id)
        .all()
    )
    counts = count_checkins_by_promoter(event.id)
    currency = _currency(event)

    run = PayoutRun(event_id=event.id, generated_by=user.id)
    db.session.add(run)
    db.session.flush()

    lines: List[PayoutLine] = []
    failed: List[int] = []
    for contract in contracts:
        attendance = attendance_for(contract, counts)
        breakdown = calculate_payout(resolve_rules(contract), attendance.effective)
        try:
            lines.append(_persist_line(run, contract, attendance, breakdown, currency))
        except PersistenceError as exc:
            current_app.logger.exception(
                "Event %s closeout: %s", event.id, exc.message
            )
            failed.append(exc.promoter_id)

    if not contracts:
        current_app.logger.info(
            "Event %s closed with no promoters configured", event.id
        )

    statement_ref = None
    if lines:
        try:
            statement_ref = generate_payout_statement(run, lines, event)
        except Exception as exc:
            _log_best_effort(BestEffortError(str(exc), collaborator="statement"))
        else:
            run.statement_ref = statement_ref
    return run, lines, failed, statement_ref


def _dispatch_side_effects(event: Event, run: PayoutRun, lines, statement_ref) -> None:
    for line in lines:
        try:
            status = notify_payout_ready(
                line.promoter, line.commission_amount, event, statement_ref
            )
        except Exception as exc:
            _log_best_effort(BestEffortError(str(exc), collaborator="notification"))
        else:
            if status == FAILED:
                _log_best_effort(
                    BestEffortError(
                        f"promoter {line.promoter_id} was not notified",
                        collaborator="notification",
                    )
                )

    try:
        emit_domain_event(
            "event_closed",
            {
                "event_id": event.id,
                "payout_run_id": run.id,
                "promoter_count": len(lines),
            },
        )
    except Exception as exc:
        db.session.rollback()
        _log_best_effort(BestEffortError(str(exc), collaborator="domain event"))


def preview_closeout(event_id: int, user) -> Dict[str, Any]:
    """Return the payouts a closeout would produce right now, without saving."""

    event = get_event_for(user, event_id)
    contracts = (
        CommissionContract.query.filter_by(event_id=event.id)
        .order_by(CommissionContract.id)
        .all()
    )
    counts = count_checkins_by_promoter(event.id)
    currency = _currency(event)

    promoters = []
    total_payout = Decimal("0")
    for contract in contracts:
        attendance = attendance_for(contract, counts)
        breakdown = calculate_payout(resolve_rules(contract), attendance.effective)
        total_payout += breakdown.final_amount
        promoters.append(
            {
                "promoter_id": contract.promoter_id,
                "promoter_name": contract.promoter.name
                if contract.promoter
                else "Unknown",
                "contract_type": contract.contract_type,
                "checkins_count": attendance.effective,
                "actual_checkins_count": attendance.actual,
                "checkins_overridden": attendance.is_overridden,
                "manual_checkins_reason": contract.manual_checkins_reason,
                "manual_adjustment_reason": contract.manual_adjustment_reason,
                "breakdown": breakdown.to_dict(),
                "summary": format_breakdown(breakdown, currency),
                "final_payout": str(breakdown.final_amount),
            }
        )

    latest_run = (
        PayoutRun.query.filter_by(event_id=event.id)
        .order_by(PayoutRun.id.desc())
        .first()
    )
    return {
        "event_id": event.id,
        "event_name": event.name,
        "currency": currency,
        "closeout_state": event.closeout_state,
        "is_locked": event.is_locked,
        "closed_at": event.closed_at.isoformat() if event.closed_at else None,
        "payout_run_id": latest_run.id if latest_run else None,
        "promoters": promoters,
        "total_checkins": count_event_checkins(event.id),
        "total_payout": str(quantize_money(total_payout)),
    }


def _get_contract(event_id: int, promoter_id: int) -> CommissionContract:
    contract = CommissionContract.query.filter_by(
        event_id=event_id, promoter_id=promoter_id
    ).first()
    if contract is None:
        raise NotFoundError("Promoter is not attached to this event")
    return contract


ADJUSTMENT_FIELDS = (
    "manual_adjustment_amount",
    "manual_adjustment_reason",
    "manual_checkins_override",
    "manual_checkins_reason",
)


def update_manual_adjustment(
    event_id: int, promoter_id: int, user, changes: Mapping[str, Any]
) -> CommissionContract:
    """Apply manual payout adjustments or a check-in override to a contract.

    Only keys present in ``changes`` are updated; ``None`` clears a value.
    """

    event = get_event_for(user, event_id)
    _ensure_unlocked(event)
    contract = _get_contract(event.id, promoter_id)
    for name in ADJUSTMENT_FIELDS:
        if name in changes:
            setattr(contract, name, changes[name])
    _hold_open(event.id)
    db.session.commit()
    log_activity(
        f"Updated manual adjustment for promoter {promoter_id} on event {event.id}",
        user.id,
    )
    return contract


def save_contract(
    event_id: int, promoter_id: int, user, payload: Mapping[str, Any]
) -> CommissionContract:
    """Validate and store the commission contract for a promoter on an event.

    Raises:
        ContractValidationError: If the payload is not a valid contract.
        ConflictError: If the event's commissions are locked.
    """

    event = get_event_for(user, event_id)
    _ensure_unlocked(event)
    if db.session.get(Promoter, promoter_id) is None:
        raise NotFoundError("Promoter not found")

    terms = build_contract(payload)

    contract = CommissionContract.query.filter_by(
        event_id=event.id, promoter_id=promoter_id
    ).first()
    created = contract is None
    if created:
        contract = CommissionContract(event_id=event.id, promoter_id=promoter_id)
        db.session.add(contract)
    for name, value in terms.to_columns().items():
        setattr(contract, name, value)
    _hold_open(event.id)
    db.session.commit()
    log_activity(
        f"{'Created' if created else 'Updated'} {terms.kind} contract for "
        f"promoter {promoter_id} on event {event.id}",
        user.id,
    )
    return contract


def contract_to_dict(contract: CommissionContract) -> dict:
    def _value(value):
        return str(value) if isinstance(value, Decimal) else value

    data = {
        "id": contract.id,
        "event_id": contract.event_id,
        "promoter_id": contract.promoter_id,
        "contract_type": contract.contract_type,
    }
    for column in (
        "per_head_rate",
        "per_head_min",
        "per_head_max",
        "fixed_fee",
        "minimum_guests",
        "below_minimum_percent",
        "bonus_threshold",
        "bonus_amount",
        "commission_rate",
        "table_commission_type",
        "table_commission_rate",
        "table_commission_flat_fee",
    ) + ADJUSTMENT_FIELDS:
        data[column] = _value(getattr(contract, column))
    data["bonus_tiers"] = [
        tier.to_dict() for tier in resolve_rules(contract).bonus_tiers
    ]
    return data
