import csv
import io
from datetime import datetime
from decimal import Decimal

import pytest

from venueledger import db
from venueledger.errors import AuthorizationError, ConflictError, NotFoundError
from venueledger.models import (
    CommissionContract,
    Event,
    Promoter,
    TableBooking,
    TableBookingCommission,
    Venue,
)
from venueledger.services import table_commissions as tables_service
from venueledger.services.table_commissions import (
    calculate_table_commissions,
    compute_booking_commission,
    export_table_commissions_csv,
    import_actual_spend,
    list_table_commissions,
    lock_table_commissions,
    record_paid_booking,
    resolve_promoter_share,
)
from tests.utils import (
    admin_user,
    create_booking,
    create_contract,
    create_event,
    create_promoter,
    create_user,
    login,
)


# ----------------------------------------------------------------------
# Promoter rate rules


def test_flat_fee_rule_wins_first():
    contract = CommissionContract(
        table_commission_type="flat_fee",
        table_commission_flat_fee=Decimal("250000"),
        table_commission_rate=Decimal("15"),
        commission_rate=Decimal("5"),
    )

    share = resolve_promoter_share(Decimal("4000000"), contract, None)

    assert share.rule == "flat_fee"
    assert share.rate is None
    assert share.amount == Decimal("250000.00")


def test_table_rate_rule():
    contract = CommissionContract(
        table_commission_type="percentage",
        table_commission_rate=Decimal("15"),
        commission_rate=Decimal("5"),
    )

    share = resolve_promoter_share(Decimal("4000000"), contract, None)

    assert share.rule == "table_rate"
    assert share.rate == Decimal("15")
    assert share.amount == Decimal("600000.00")


def test_legacy_rate_rule_uses_contract_rate():
    contract = CommissionContract(commission_rate=Decimal("5"))
    promoter = Promoter(name="Rina", commission_rate=Decimal("8"))

    share = resolve_promoter_share(Decimal("1000000"), contract, promoter)

    assert share.rule == "legacy_rate"
    assert share.amount == Decimal("50000.00")


def test_legacy_rate_rule_falls_back_to_promoter_rate():
    promoter = Promoter(name="Rina", commission_rate=Decimal("8"))

    share = resolve_promoter_share(Decimal("1000000"), None, promoter)

    assert share.rule == "legacy_rate"
    assert share.rate == Decimal("8")
    assert share.amount == Decimal("80000.00")


def test_no_rate_means_no_commission():
    share = resolve_promoter_share(
        Decimal("1000000"), CommissionContract(), Promoter(name="Rina")
    )

    assert share.rule == "none"
    assert share.amount == Decimal("0.00")


def test_amounts_round_per_booking():
    contract = CommissionContract(table_commission_rate=Decimal("12.5"))

    share = resolve_promoter_share(Decimal("100.05"), contract, None)

    # 100.05 x 12.5% = 12.50625
    assert share.amount == Decimal("12.51")


def test_minimum_spend_used_when_actual_missing():
    booking = TableBooking(
        id=1, event_id=1, actual_spend=None, minimum_spend=Decimal("5000000")
    )

    result = compute_booking_commission(booking, None, Decimal("10"))

    assert result.spend_amount == Decimal("5000000.00")
    assert result.spend_source == "minimum"
    assert result.venue_commission_amount == Decimal("500000.00")
    assert result.promoter.rule == "none"


def test_actual_spend_wins_even_when_zero():
    booking = TableBooking(
        id=1, event_id=1, actual_spend=Decimal("0"), minimum_spend=Decimal("5000000")
    )

    result = compute_booking_commission(booking, None, Decimal("10"))

    assert result.spend_source == "actual"
    assert result.spend_amount == Decimal("0.00")


# ----------------------------------------------------------------------
# Calculation runs


def _venue(owner=None, rate=None):
    venue = Venue(
        name="Main Room",
        owner_id=owner.id if owner else None,
        table_commission_rate=rate,
    )
    db.session.add(venue)
    db.session.commit()
    return venue


def test_calculation_creates_records(app):
    with app.app_context():
        event = create_event()
        promoter = create_promoter(commission_rate=Decimal("5"))
        create_booking(event, promoter, minimum_spend=5000000)
        create_booking(event, None, actual_spend=2000000, status="completed")
        create_booking(event, promoter, actual_spend=999, status="cancelled")

        result = calculate_table_commissions(event.id, admin_user())

        summary = result["summary"]
        assert summary["processed"] == 2
        assert summary["created"] == 2
        assert summary["updated"] == 0
        assert Decimal(summary["venue_commission_rate"]) == Decimal("10")
        assert summary["total_spend"] == "7000000.00"
        assert summary["total_venue_commission"] == "700000.00"
        assert summary["total_promoter_commission"] == "250000.00"

        first = result["commissions"][0]
        assert first["spend_source"] == "minimum"
        assert first["promoter_commission_rule"] == "legacy_rate"
        assert TableBookingCommission.query.count() == 2


def test_venue_rate_comes_from_the_venue(app):
    with app.app_context():
        venue = _venue(rate=Decimal("12"))
        event = create_event(venue=venue)
        create_booking(event, actual_spend=1000)

        result = calculate_table_commissions(event.id, admin_user())

        assert Decimal(result["summary"]["venue_commission_rate"]) == Decimal("12")
        assert result["commissions"][0]["venue_commission_amount"] == "120.00"


def test_recalculation_updates_in_place(app):
    with app.app_context():
        event = create_event()
        promoter = create_promoter()
        create_contract(event, promoter, table_commission_rate=Decimal("10"))
        booking = create_booking(event, promoter, minimum_spend=1000)
        admin = admin_user()
        calculate_table_commissions(event.id, admin)
        record_id = TableBookingCommission.query.one().id

        booking.actual_spend = Decimal("3000")
        db.session.commit()
        result = calculate_table_commissions(event.id, admin)

        assert result["summary"]["created"] == 0
        assert result["summary"]["updated"] == 1
        record = TableBookingCommission.query.one()
        assert record.id == record_id
        assert record.spend_source == "actual"
        assert record.promoter_commission_amount == Decimal("300.00")


def test_locked_records_are_never_touched(app):
    with app.app_context():
        event = create_event()
        promoter = create_promoter(commission_rate=Decimal("5"))
        locked_booking = create_booking(event, promoter, actual_spend=1000)
        create_booking(event, promoter, actual_spend=2000)
        admin = admin_user()
        calculate_table_commissions(event.id, admin)

        locked = TableBookingCommission.query.filter_by(
            booking_id=locked_booking.id
        ).one()
        locked.locked = True
        db.session.commit()
        locked_before = locked.to_dict()

        locked_booking.actual_spend = Decimal("50000")
        db.session.commit()
        result = calculate_table_commissions(event.id, admin)

        assert result["summary"]["processed"] == 1
        assert result["summary"]["updated"] == 1
        assert result["summary"]["created"] == 0
        assert locked_booking.id not in [c["booking_id"] for c in result["commissions"]]
        locked = TableBookingCommission.query.filter_by(
            booking_id=locked_booking.id
        ).one()
        assert locked.to_dict() == locked_before


def test_closeout_locked_bookings_are_skipped(app):
    with app.app_context():
        event = create_event()
        booking = create_booking(event, actual_spend=1000)
        booking.closeout_locked = True
        db.session.commit()

        result = calculate_table_commissions(event.id, admin_user())

        assert result["summary"]["processed"] == 0
        assert TableBookingCommission.query.count() == 0


def test_calculation_refused_on_locked_event(app):
    with app.app_context():
        event = create_event()
        event.closeout_state = "closed"
        event.closed_at = event.locked_at = datetime.utcnow()
        db.session.commit()

        with pytest.raises(ConflictError):
            calculate_table_commissions(event.id, admin_user())


def test_table_access_is_admin_or_venue_owner(app):
    with app.app_context():
        owner = create_user("owner@example.com")
        organizer = create_user("organizer@example.com")
        venue = _venue(owner=owner)
        event = create_event(organizer=organizer, venue=venue)
        create_booking(event, actual_spend=100)

        with pytest.raises(AuthorizationError):
            calculate_table_commissions(event.id, organizer)
        assert calculate_table_commissions(event.id, owner)["summary"]["created"] == 1

        with pytest.raises(NotFoundError):
            calculate_table_commissions(12345, owner)


def test_calculation_never_locks(app):
    with app.app_context():
        event = create_event()
        create_booking(event, actual_spend=100)

        calculate_table_commissions(event.id, admin_user())

        record = TableBookingCommission.query.one()
        assert record.locked is False
        assert record.booking.closeout_locked is False


# ----------------------------------------------------------------------
# Spend import, locking and export


def test_import_actual_spend_reports_errors_per_entry(app):
    with app.app_context():
        event = create_event()
        other_event = create_event("Elsewhere")
        first = create_booking(event, minimum_spend=1000)
        second = create_booking(event, minimum_spend=1000)
        foreign = create_booking(other_event, minimum_spend=1000)
        locked = create_booking(event, minimum_spend=1000)
        locked.closeout_locked = True
        db.session.commit()

        result = import_actual_spend(
            event.id,
            admin_user(),
            [
                {"booking_id": first.id, "actual_spend": "5.000.000"},
                {"booking_id": str(second.id), "actual_spend": "=1200+300"},
                {"booking_id": foreign.id, "actual_spend": "10"},
                {"booking_id": locked.id, "actual_spend": "10"},
                {"booking_id": first.id, "actual_spend": "lots"},
                {"booking_id": second.id, "actual_spend": "-5"},
            ],
        )

        assert result["updated"] == 2
        assert [error["row"] for error in result["errors"]] == [2, 3, 4, 5]
        assert db.session.get(TableBooking, first.id).actual_spend == Decimal("5000000")
        assert db.session.get(TableBooking, second.id).actual_spend == Decimal("1500")
        assert db.session.get(TableBooking, locked.id).actual_spend is None


def test_lock_table_commissions(app):
    with app.app_context():
        event = create_event()
        booking = create_booking(event, actual_spend=1000)
        admin = admin_user()

        result = lock_table_commissions(event.id, admin)

        assert result["summary"]["count"] == 1
        assert result["summary"]["locked"] == 1
        record = TableBookingCommission.query.one()
        assert record.locked is True
        assert record.locked_at is not None
        assert db.session.get(TableBooking, booking.id).closeout_locked is True
        locked_event = db.session.get(Event, event.id)
        assert locked_event.tables_closeout_at is not None
        assert locked_event.tables_closeout_by == admin.id

        rerun = calculate_table_commissions(event.id, admin)
        assert rerun["summary"]["processed"] == 0


def test_list_and_export(app):
    with app.app_context():
        event = create_event()
        promoter = create_promoter("Rina", commission_rate=Decimal("5"))
        create_booking(event, promoter, actual_spend=2000)
        admin = admin_user()
        calculate_table_commissions(event.id, admin)

        listing = list_table_commissions(event.id, admin)
        exported = export_table_commissions_csv(event.id, admin)

    assert listing["summary"]["count"] == 1
    assert listing["summary"]["total_promoter_commission"] == "100.00"
    rows = list(csv.reader(io.StringIO(exported)))
    assert rows[0][0] == "Booking"
    assert rows[1][2] == "Rina"
    assert rows[1][3] == "2000.00"
    assert rows[1][4] == "actual"
    assert rows[1][5] == "legacy_rate"
    assert rows[1][-1] == "no"


def test_record_paid_booking(app):
    with app.app_context():
        event = create_event()
        promoter = create_promoter(commission_rate=Decimal("5"))
        booking = create_booking(event, promoter, status="pending", minimum_spend=1000)
        already_spent = create_booking(event, status="pending", actual_spend=700)

        record_paid_booking(booking.id, "500")
        record_paid_booking(already_spent.id, Decimal("900"))

        paid = db.session.get(TableBooking, booking.id)
        assert paid.status == "confirmed"
        assert paid.paid_amount == Decimal("500")
        assert paid.actual_spend is None
        assert db.session.get(TableBooking, already_spent.id).actual_spend == Decimal("700")

        result = calculate_table_commissions(event.id, admin_user())
        first = result["commissions"][0]
        assert first["booking_id"] == booking.id
        assert first["spend_source"] == "minimum"
        assert Decimal(first["spend_amount"]) == Decimal("1000")

        with pytest.raises(NotFoundError):
            record_paid_booking(4040, 10)


def test_paid_cancelled_booking_stays_out_of_commissions(app):
    with app.app_context():
        event = create_event()
        promoter = create_promoter(commission_rate=Decimal("10"))
        booking = create_booking(event, promoter, status="cancelled", minimum_spend=1000)

        record_paid_booking(booking.id, "500")

        assert db.session.get(TableBooking, booking.id).status == "cancelled"
        result = calculate_table_commissions(event.id, admin_user())
        assert result["summary"]["processed"] == 0
        assert TableBookingCommission.query.count() == 0


def test_calculation_rolls_back_when_event_locks_midway(app, monkeypatch):
    with app.app_context():
        event = create_event()
        promoter = create_promoter(commission_rate=Decimal("5"))
        create_booking(event, promoter, minimum_spend=1000)
        event_id = event.id

        load_bookings = tables_service._qualifying_bookings

        def locked_after_read(target_id):
            bookings = load_bookings(target_id)
            closing = db.session.get(Event, target_id)
            closing.closeout_state = "closed"
            closing.closed_at = closing.locked_at = datetime.utcnow()
            db.session.commit()
            return bookings

        monkeypatch.setattr(tables_service, "_qualifying_bookings", locked_after_read)

        with pytest.raises(ConflictError):
            calculate_table_commissions(event_id, admin_user())

        assert TableBookingCommission.query.count() == 0


def test_calls_for_one_event_share_a_lock():
    assert tables_service._lock_for(7) is tables_service._lock_for(7)
    assert tables_service._lock_for(7) is not tables_service._lock_for(8)
    assert len(tables_service._event_locks) == tables_service.EVENT_LOCK_STRIPES
    for event_id in range(1000):
        tables_service._lock_for(event_id)
    assert len(tables_service._event_locks) == tables_service.EVENT_LOCK_STRIPES


# ----------------------------------------------------------------------
# Routes


def test_table_routes(client, app):
    with app.app_context():
        event = create_event()
        booking = create_booking(event, minimum_spend=5000000)
        event_id, booking_id = event.id, booking.id
    login(client, "admin@example.com", "adminpass")

    calculated = client.post(f"/events/{event_id}/tables/commissions/calculate")
    assert calculated.status_code == 200
    commission = calculated.get_json()["commissions"][0]
    assert commission["spend_amount"] == "5000000.00"
    assert commission["spend_source"] == "minimum"
    assert commission["venue_commission_amount"] == "500000.00"

    imported = client.post(
        f"/events/{event_id}/tables/spend",
        json={"entries": [{"booking_id": booking_id, "actual_spend": "6,000,000"}]},
    )
    assert imported.get_json() == {"updated": 1, "errors": []}

    assert client.post(f"/events/{event_id}/tables/spend", json={}).status_code == 400

    export = client.get(f"/events/{event_id}/tables/commissions/export")
    assert export.status_code == 200
    assert export.headers["Content-Type"].startswith("text/csv")
    assert "attachment" in export.headers["Content-Disposition"]

    locked = client.post(f"/events/{event_id}/tables/commissions/lock")
    assert locked.status_code == 200
    assert locked.get_json()["commissions"][0]["spend_amount"] == "6000000.00"

    listing = client.get(f"/events/{event_id}/tables/commissions")
    assert listing.get_json()["summary"]["locked"] == 1


def test_table_routes_refuse_locked_event(client, app):
    with app.app_context():
        event = create_event()
        event.closeout_state = "closed"
        event.closed_at = event.locked_at = datetime.utcnow()
        db.session.commit()
        event_id = event.id
    login(client, "admin@example.com", "adminpass")

    response = client.post(f"/events/{event_id}/tables/commissions/calculate")

    assert response.status_code == 409
