"""Ownership checks for closeout and table commission actions."""

from __future__ import annotations

from venueledger import db
from venueledger.errors import AuthorizationError, NotFoundError
from venueledger.models import Event


def _is_venue_owner(user, event: Event) -> bool:
    venue = event.venue
    return venue is not None and venue.owner_id is not None and venue.owner_id == user.id


def user_can_manage_event(user, event: Event) -> bool:
    """Admins, the event organizer and the venue owner may close out an event."""

    if user is None or not getattr(user, "is_authenticated", False):
        return False
    if user.is_admin:
        return True
    if event.organizer_id is not None and event.organizer_id == user.id:
        return True
    return _is_venue_owner(user, event)


def user_can_manage_tables(user, event: Event) -> bool:
    """Only admins and the venue owner may calculate table commissions."""

    if user is None or not getattr(user, "is_authenticated", False):
        return False
    return bool(user.is_admin) or _is_venue_owner(user, event)


def get_event_for(user, event_id: int, *, tables: bool = False) -> Event:
    """Return the event if it exists and ``user`` may act on it.

    Raises:
        NotFoundError: If the event does not exist.
        AuthorizationError: If the user may not manage the event.
    """

    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    allowed = (
        user_can_manage_tables(user, event)
        if tables
        else user_can_manage_event(user, event)
    )
    if not allowed:
        raise AuthorizationError("Forbidden")
    return event
