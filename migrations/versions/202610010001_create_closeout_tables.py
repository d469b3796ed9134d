import sqlalchemy as sa
from alembic import op


def _has_table(table_name: str, bind) -> bool:
    inspector = sa.inspect(bind)
    return inspector.has_table(table_name)


# revision identifiers, used by Alembic.
revision = "202610010001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    bind = op.get_bind()
    if not bind:
        return

    if not _has_table("user", bind):
        op.create_table(
            "user",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=120), nullable=False, unique=True),
            sa.Column("password", sa.String(length=255), nullable=False),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.false()),
        )

    if not _has_table("activity_log", bind):
        op.create_table(
            "activity_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
            sa.Column("activity", sa.String(length=255), nullable=False),
            sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _has_table("venue", bind):
        op.create_table(
            "venue",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
            sa.Column("table_commission_rate", sa.Numeric(5, 2), nullable=True),
        )

    if not _has_table("promoter", bind):
        op.create_table(
            "promoter",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=120), nullable=True),
            sa.Column("phone_number", sa.String(length=20), nullable=True),
            sa.Column("notify_sms", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        )

    if not _has_table("event", bind):
        op.create_table(
            "event",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=True),
            sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
            sa.Column("venue_id", sa.Integer(), sa.ForeignKey("venue.id"), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("closeout_state", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("finalizing_started_at", sa.DateTime(), nullable=True),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
            sa.Column("closed_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
            sa.Column("locked_at", sa.DateTime(), nullable=True),
            sa.Column("closeout_notes", sa.Text(), nullable=True),
            sa.Column("total_revenue", sa.Numeric(14, 2), nullable=True),
            sa.Column("tables_closeout_at", sa.DateTime(), nullable=True),
            sa.Column("tables_closeout_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        )
        op.create_index("ix_event_closeout_state", "event", ["closeout_state"])

    if not _has_table("commission_contract", bind):
        op.create_table(
            "commission_contract",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("event.id"), nullable=False),
            sa.Column("promoter_id", sa.Integer(), sa.ForeignKey("promoter.id"), nullable=False),
            sa.Column("contract_type", sa.String(length=20), nullable=False, server_default="hybrid"),
            sa.Column("per_head_rate", sa.Numeric(12, 2), nullable=True),
            sa.Column("per_head_min", sa.Numeric(12, 2), nullable=True),
            sa.Column("per_head_max", sa.Numeric(12, 2), nullable=True),
            sa.Column("fixed_fee", sa.Numeric(12, 2), nullable=True),
            sa.Column("minimum_guests", sa.Integer(), nullable=True),
            sa.Column("below_minimum_percent", sa.Numeric(5, 2), nullable=True),
            sa.Column("bonus_threshold", sa.Integer(), nullable=True),
            sa.Column("bonus_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("bonus_tiers", sa.Text(), nullable=True),
            sa.Column("manual_adjustment_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("manual_adjustment_reason", sa.String(length=255), nullable=True),
            sa.Column("manual_checkins_override", sa.Integer(), nullable=True),
            sa.Column("manual_checkins_reason", sa.String(length=255), nullable=True),
            sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
            sa.Column("table_commission_type", sa.String(length=20), nullable=True),
            sa.Column("table_commission_rate", sa.Numeric(5, 2), nullable=True),
            sa.Column("table_commission_flat_fee", sa.Numeric(12, 2), nullable=True),
            sa.UniqueConstraint("event_id", "promoter_id", name="_event_promoter_uc"),
        )

    if not _has_table("registration", bind):
        op.create_table(
            "registration",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("event.id"), nullable=False),
            sa.Column("attendee_name", sa.String(length=100), nullable=True),
            sa.Column("referral_promoter_id", sa.Integer(), sa.ForeignKey("promoter.id"), nullable=True),
        )
        op.create_index("ix_registration_event", "registration", ["event_id"])

    if not _has_table("checkin", bind):
        op.create_table(
            "checkin",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("registration_id", sa.Integer(), sa.ForeignKey("registration.id"), nullable=False),
            sa.Column("checked_in_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("undo_at", sa.DateTime(), nullable=True),
        )

    if not _has_table("payout_run", bind):
        op.create_table(
            "payout_run",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("event.id"), nullable=False),
            sa.Column("generated_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
            sa.Column("generated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("statement_ref", sa.String(length=255), nullable=True),
        )

    if not _has_table("payout_line", bind):
        op.create_table(
            "payout_line",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("payout_run_id", sa.Integer(), sa.ForeignKey("payout_run.id"), nullable=False),
            sa.Column("promoter_id", sa.Integer(), sa.ForeignKey("promoter.id"), nullable=False),
            sa.Column("checkins_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("actual_checkins_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("breakdown", sa.JSON(), nullable=True),
            sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending_payment"),
            sa.UniqueConstraint("payout_run_id", "promoter_id", name="_run_promoter_uc"),
        )

    if not _has_table("table_booking", bind):
        op.create_table(
            "table_booking",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("event.id"), nullable=False),
            sa.Column("promoter_id", sa.Integer(), sa.ForeignKey("promoter.id"), nullable=True),
            sa.Column("guest_name", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("actual_spend", sa.Numeric(14, 2), nullable=True),
            sa.Column("minimum_spend", sa.Numeric(14, 2), nullable=True),
            sa.Column("paid_amount", sa.Numeric(14, 2), nullable=True),
            sa.Column("closeout_locked", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_table_booking_event", "table_booking", ["event_id", "status"])

    if not _has_table("table_booking_commission", bind):
        op.create_table(
            "table_booking_commission",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("booking_id", sa.Integer(), sa.ForeignKey("table_booking.id"), nullable=False, unique=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("event.id"), nullable=False),
            sa.Column("promoter_id", sa.Integer(), sa.ForeignKey("promoter.id"), nullable=True),
            sa.Column("spend_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("spend_source", sa.String(length=10), nullable=False),
            sa.Column("promoter_commission_rate", sa.Numeric(5, 2), nullable=True),
            sa.Column("promoter_commission_rule", sa.String(length=20), nullable=True),
            sa.Column("promoter_commission_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("venue_commission_rate", sa.Numeric(5, 2), nullable=False),
            sa.Column("venue_commission_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("locked", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("locked_at", sa.DateTime(), nullable=True),
            *_timestamps(),
        )

    if not _has_table("outbox_event", bind):
        op.create_table(
            "outbox_event",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )


def downgrade():
    for table_name in (
        "outbox_event",
        "table_booking_commission",
        "table_booking",
        "payout_line",
        "payout_run",
        "checkin",
        "registration",
        "commission_contract",
        "event",
        "promoter",
        "venue",
        "activity_log",
        "user",
    ):
        op.drop_table(table_name)
