import os
from decimal import Decimal

from venueledger import create_admin_user, create_app, db
from venueledger.models import Event, Promoter, User, Venue


def seed_initial_data() -> None:
    """Seed the database with an admin user and a demo venue and event."""
    app, _ = create_app([])
    with app.app_context():
        create_admin_user()
        admin = User.query.filter_by(is_admin=True).first()

        venue_name = os.getenv("DEMO_VENUE_NAME", "Main Room")
        venue = Venue.query.filter_by(name=venue_name).first()
        if venue is None:
            venue = Venue(
                name=venue_name,
                owner_id=admin.id,
                table_commission_rate=Decimal(
                    str(app.config["DEFAULT_VENUE_COMMISSION_RATE"])
                ),
            )
            db.session.add(venue)
            db.session.flush()

        if Event.query.filter_by(venue_id=venue.id).first() is None:
            db.session.add(
                Event(
                    name="Opening Night",
                    currency=app.config["DEFAULT_CURRENCY"],
                    organizer_id=admin.id,
                    venue_id=venue.id,
                    status="published",
                )
            )
        if Promoter.query.first() is None:
            db.session.add(Promoter(name="House Promoter", commission_rate=Decimal("5")))

        db.session.commit()
        print("Initial admin user, venue and event created.")


if __name__ == "__main__":
    seed_initial_data()
