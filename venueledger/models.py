from datetime import datetime

from flask_login import UserMixin
from sqlalchemy.orm import relationship

from venueledger import db

CLOSEOUT_OPEN = "open"
CLOSEOUT_FINALIZING = "finalizing"
CLOSEOUT_CLOSED = "closed"

PAYMENT_PENDING = "pending_payment"

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_QUALIFYING_STATUSES = (BOOKING_CONFIRMED, "completed")


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    active = db.Column(db.Boolean, default=False, nullable=False)


class ActivityLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    activity = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", backref="activity_logs")


class Venue(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    table_commission_rate = db.Column(db.Numeric(5, 2), nullable=True)

    owner = relationship("User")


class Promoter(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), nullable=True)
    phone_number = db.Column(db.String(20), nullable=True)
    notify_sms = db.Column(
        db.Boolean, default=False, nullable=False, server_default="0"
    )
    commission_rate = db.Column(db.Numeric(5, 2), nullable=True)


class Event(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    currency = db.Column(db.String(3), nullable=True)
    organizer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    venue_id = db.Column(db.Integer, db.ForeignKey("venue.id"), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="draft", server_default="draft"
    )
    closeout_state = db.Column(
        db.String(20),
        nullable=False,
        default=CLOSEOUT_OPEN,
        server_default=CLOSEOUT_OPEN,
    )
    finalizing_started_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)
    closed_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    locked_at = db.Column(db.DateTime, nullable=True)
    closeout_notes = db.Column(db.Text, nullable=True)
    total_revenue = db.Column(db.Numeric(14, 2), nullable=True)
    tables_closeout_at = db.Column(db.DateTime, nullable=True)
    tables_closeout_by = db.Column(
        db.Integer, db.ForeignKey("user.id"), nullable=True
    )

    venue = relationship("Venue")
    organizer = relationship("User", foreign_keys=[organizer_id])
    contracts = relationship(
        "CommissionContract",
        back_populates="event",
        cascade="all, delete-orphan",
    )

    __table_args__ = (db.Index("ix_event_closeout_state", "closeout_state"),)

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None


class CommissionContract(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("event.id"), nullable=False)
    promoter_id = db.Column(
        db.Integer, db.ForeignKey("promoter.id"), nullable=False
    )
    contract_type = db.Column(
        db.String(20), nullable=False, default="hybrid", server_default="hybrid"
    )
    per_head_rate = db.Column(db.Numeric(12, 2), nullable=True)
    per_head_min = db.Column(db.Numeric(12, 2), nullable=True)
    per_head_max = db.Column(db.Numeric(12, 2), nullable=True)
    fixed_fee = db.Column(db.Numeric(12, 2), nullable=True)
    minimum_guests = db.Column(db.Integer, nullable=True)
    below_minimum_percent = db.Column(db.Numeric(5, 2), nullable=True)
    bonus_threshold = db.Column(db.Integer, nullable=True)
    bonus_amount = db.Column(db.Numeric(12, 2), nullable=True)
    bonus_tiers = db.Column(db.Text, nullable=True)
    manual_adjustment_amount = db.Column(db.Numeric(12, 2), nullable=True)
    manual_adjustment_reason = db.Column(db.String(255), nullable=True)
    manual_checkins_override = db.Column(db.Integer, nullable=True)
    manual_checkins_reason = db.Column(db.String(255), nullable=True)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=True)
    table_commission_type = db.Column(db.String(20), nullable=True)
    table_commission_rate = db.Column(db.Numeric(5, 2), nullable=True)
    table_commission_flat_fee = db.Column(db.Numeric(12, 2), nullable=True)

    event = relationship("Event", back_populates="contracts")
    promoter = relationship("Promoter")

    __table_args__ = (
        db.UniqueConstraint("event_id", "promoter_id", name="_event_promoter_uc"),
    )


class Registration(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("event.id"), nullable=False)
    attendee_name = db.Column(db.String(100), nullable=True)
    referral_promoter_id = db.Column(
        db.Integer, db.ForeignKey("promoter.id"), nullable=True
    )

    checkins = relationship(
        "Checkin", back_populates="registration", cascade="all, delete-orphan"
    )

    __table_args__ = (db.Index("ix_registration_event", "event_id"),)


class Checkin(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(
        db.Integer, db.ForeignKey("registration.id"), nullable=False
    )
    checked_in_at = db.Column(
        db.DateTime, default=datetime.utcnow, nullable=False
    )
    undo_at = db.Column(db.DateTime, nullable=True)

    registration = relationship("Registration", back_populates="checkins")


class PayoutRun(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("event.id"), nullable=False)
    generated_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    generated_at = db.Column(
        db.DateTime, default=datetime.utcnow, nullable=False
    )
    statement_ref = db.Column(db.String(255), nullable=True)

    lines = relationship(
        "PayoutLine", back_populates="payout_run", order_by="PayoutLine.id"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "generated_by": self.generated_by,
            "generated_at": self.generated_at.isoformat()
            if self.generated_at
            else None,
            "statement_ref": self.statement_ref,
        }


class PayoutLine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    payout_run_id = db.Column(
        db.Integer, db.ForeignKey("payout_run.id"), nullable=False
    )
    promoter_id = db.Column(
        db.Integer, db.ForeignKey("promoter.id"), nullable=False
    )
    checkins_count = db.Column(db.Integer, nullable=False, default=0)
    actual_checkins_count = db.Column(db.Integer, nullable=False, default=0)
    commission_amount = db.Column(db.Numeric(12, 2), nullable=False)
    breakdown = db.Column(db.JSON, nullable=True)
    payment_status = db.Column(
        db.String(20),
        nullable=False,
        default=PAYMENT_PENDING,
        server_default=PAYMENT_PENDING,
    )

    payout_run = relationship("PayoutRun", back_populates="lines")
    promoter = relationship("Promoter")

    __table_args__ = (
        db.UniqueConstraint(
            "payout_run_id", "promoter_id", name="_run_promoter_uc"
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payout_run_id": self.payout_run_id,
            "promoter_id": self.promoter_id,
            "checkins_count": self.checkins_count,
            "actual_checkins_count": self.actual_checkins_count,
            "commission_amount": str(self.commission_amount),
            "payment_status": self.payment_status,
            "breakdown": self.breakdown,
        }


class TableBooking(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("event.id"), nullable=False)
    promoter_id = db.Column(
        db.Integer, db.ForeignKey("promoter.id"), nullable=True
    )
    guest_name = db.Column(db.String(100), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=BOOKING_PENDING, server_default=BOOKING_PENDING
    )
    actual_spend = db.Column(db.Numeric(14, 2), nullable=True)
    minimum_spend = db.Column(db.Numeric(14, 2), nullable=True)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=True)
    closeout_locked = db.Column(
        db.Boolean, default=False, nullable=False, server_default="0"
    )
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    promoter = relationship("Promoter")

    __table_args__ = (db.Index("ix_table_booking_event", "event_id", "status"),)


class TableBookingCommission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(
        db.Integer, db.ForeignKey("table_booking.id"), nullable=False, unique=True
    )
    event_id = db.Column(db.Integer, db.ForeignKey("event.id"), nullable=False)
    promoter_id = db.Column(
        db.Integer, db.ForeignKey("promoter.id"), nullable=True
    )
    spend_amount = db.Column(db.Numeric(14, 2), nullable=False)
    spend_source = db.Column(db.String(10), nullable=False)
    promoter_commission_rate = db.Column(db.Numeric(5, 2), nullable=True)
    promoter_commission_rule = db.Column(db.String(20), nullable=True)
    promoter_commission_amount = db.Column(
        db.Numeric(14, 2), nullable=False, default=0
    )
    venue_commission_rate = db.Column(db.Numeric(5, 2), nullable=False)
    venue_commission_amount = db.Column(
        db.Numeric(14, 2), nullable=False, default=0
    )
    locked = db.Column(
        db.Boolean, default=False, nullable=False, server_default="0"
    )
    locked_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    booking = relationship("TableBooking", backref="commission")
    promoter = relationship("Promoter")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "event_id": self.event_id,
            "promoter_id": self.promoter_id,
            "spend_amount": str(self.spend_amount),
            "spend_source": self.spend_source,
            "promoter_commission_rate": None
            if self.promoter_commission_rate is None
            else str(self.promoter_commission_rate),
            "promoter_commission_rule": self.promoter_commission_rule,
            "promoter_commission_amount": str(self.promoter_commission_amount),
            "venue_commission_rate": str(self.venue_commission_rate),
            "venue_commission_amount": str(self.venue_commission_amount),
            "locked": self.locked,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }


class OutboxEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
