"""Attendance counts used by promoter payouts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import func

from venueledger import db
from venueledger.models import Checkin, Registration


@dataclass(frozen=True)
class PromoterAttendance:
    """Actual check-ins for a promoter plus any manual override."""

    actual: int
    override: Optional[int] = None

    @property
    def effective(self) -> int:
        return self.override if self.override is not None else self.actual

    @property
    def is_overridden(self) -> bool:
        return self.override is not None


def count_checkins_by_promoter(event_id: int) -> Dict[int, int]:
    """Return valid (not undone) check-ins per referring promoter."""

    rows = (
        db.session.query(Registration.referral_promoter_id, func.count(Checkin.id))
        .join(Checkin, Checkin.registration_id == Registration.id)
        .filter(
            Registration.event_id == event_id,
            Registration.referral_promoter_id.isnot(None),
            Checkin.undo_at.is_(None),
        )
        .group_by(Registration.referral_promoter_id)
        .all()
    )
    return {promoter_id: int(count) for promoter_id, count in rows}


def count_event_checkins(event_id: int) -> int:
    """Return all valid check-ins for the event, referred or not."""

    return int(
        db.session.query(func.count(Checkin.id))
        .join(Registration, Checkin.registration_id == Registration.id)
        .filter(Registration.event_id == event_id, Checkin.undo_at.is_(None))
        .scalar()
        or 0
    )


def attendance_for(contract, counts: Dict[int, int]) -> PromoterAttendance:
    """Combine aggregated counts with the contract's manual override."""

    return PromoterAttendance(
        actual=counts.get(contract.promoter_id, 0),
        override=contract.manual_checkins_override,
    )
