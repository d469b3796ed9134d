"""Utility helpers shared across the test-suite."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from werkzeug.security import generate_password_hash

from venueledger import db
from venueledger.models import (
    Checkin,
    CommissionContract,
    Event,
    Promoter,
    Registration,
    TableBooking,
    User,
    Venue,
)


def login(client, email: str, password: str):
    """Log a user in through the JSON login endpoint."""

    return client.post("/auth/login", json={"email": email, "password": password})


def create_user(email: str, password: str = "secret", *, is_admin: bool = False) -> User:
    user = User(
        email=email,
        password=generate_password_hash(password),
        is_admin=is_admin,
        active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def admin_user() -> User:
    return User.query.filter_by(is_admin=True).first()


def create_event(
    name: str = "Launch Party",
    *,
    organizer: Optional[User] = None,
    venue: Optional[Venue] = None,
    currency: str = "IDR",
) -> Event:
    event = Event(
        name=name,
        currency=currency,
        organizer_id=organizer.id if organizer else None,
        venue_id=venue.id if venue else None,
        status="published",
    )
    db.session.add(event)
    db.session.commit()
    return event


def create_promoter(name: str = "Rina", **fields) -> Promoter:
    promoter = Promoter(name=name, **fields)
    db.session.add(promoter)
    db.session.commit()
    return promoter


def create_contract(event: Event, promoter: Promoter, **fields) -> CommissionContract:
    contract = CommissionContract(
        event_id=event.id, promoter_id=promoter.id, **fields
    )
    db.session.add(contract)
    db.session.commit()
    return contract


def add_checkins(
    event: Event, promoter: Optional[Promoter], count: int, *, undone: int = 0
) -> None:
    """Register ``count`` guests who checked in, ``undone`` of them reversed."""

    for index in range(count):
        registration = Registration(
            event_id=event.id,
            attendee_name=f"Guest {index}",
            referral_promoter_id=promoter.id if promoter else None,
        )
        registration.checkins.append(
            Checkin(undo_at=datetime.utcnow() if index < undone else None)
        )
        db.session.add(registration)
    db.session.commit()


def create_booking(
    event: Event,
    promoter: Optional[Promoter] = None,
    *,
    status: str = "confirmed",
    actual_spend=None,
    minimum_spend=None,
) -> TableBooking:
    booking = TableBooking(
        event_id=event.id,
        promoter_id=promoter.id if promoter else None,
        guest_name="Table guest",
        status=status,
        actual_spend=None if actual_spend is None else Decimal(str(actual_spend)),
        minimum_spend=None if minimum_spend is None else Decimal(str(minimum_spend)),
    )
    db.session.add(booking)
    db.session.commit()
    return booking
