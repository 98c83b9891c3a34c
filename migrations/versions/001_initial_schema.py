"""Initial schema: providers, session_types, availability_rules, time_off, bookings.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

modality = sa.Enum("ONLINE", "IN_PERSON", "PHONE", name="modality")
day_of_week = sa.Enum(
    "MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY", name="dayofweek"
)
booking_status = sa.Enum(
    "PENDING_PAYMENT", "CONFIRMED", "CANCELLED", "COMPLETED", "NO_SHOW", name="bookingstatus"
)
payment_status = sa.Enum("PENDING", "COMPLETED", "FAILED", "REFUNDED", name="paymentstatus")


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("specialization", sa.String(), nullable=True),
        sa.Column("bio", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("hashed_password", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_providers_email"), "providers", ["email"], unique=True)

    op.create_table(
        "session_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("modality", modality, nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "availability_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", day_of_week, nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("effective_from", sa.Date(), nullable=True),
        sa.Column("effective_until", sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_availability_rules_provider_id"), "availability_rules", ["provider_id"])
    op.create_index(op.f("ix_availability_rules_day_of_week"), "availability_rules", ["day_of_week"])

    op.create_table(
        "time_off",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("start_datetime", sa.DateTime(), nullable=False),
        sa.Column("end_datetime", sa.DateTime(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_time_off_provider_id"), "time_off", ["provider_id"])
    op.create_index(op.f("ix_time_off_start_datetime"), "time_off", ["start_datetime"])
    op.create_index(op.f("ix_time_off_end_datetime"), "time_off", ["end_datetime"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("session_type_id", sa.Integer(), nullable=False),
        sa.Column("appointment_datetime", sa.DateTime(), nullable=False),
        sa.Column("appointment_end", sa.DateTime(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("modality", modality, nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("payment_status", payment_status, nullable=False),
        sa.Column("booking_status", booking_status, nullable=False),
        sa.Column("confirmation_token", sa.String(), nullable=False),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("provider_notes", sa.String(), nullable=True),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"]),
        sa.ForeignKeyConstraint(["session_type_id"], ["session_types.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bookings_provider_id"), "bookings", ["provider_id"])
    op.create_index(op.f("ix_bookings_appointment_datetime"), "bookings", ["appointment_datetime"])
    op.create_index(op.f("ix_bookings_appointment_end"), "bookings", ["appointment_end"])
    op.create_index(op.f("ix_bookings_email"), "bookings", ["email"])
    op.create_index(op.f("ix_bookings_booking_status"), "bookings", ["booking_status"])
    op.create_index(op.f("ix_bookings_confirmation_token"), "bookings", ["confirmation_token"], unique=True)

    if op.get_bind().dialect.name == "postgresql":
        # Two live bookings of one provider may not intersect, across processes too
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE bookings ADD CONSTRAINT bookings_no_overlap "
            "EXCLUDE USING gist (provider_id WITH =, "
            "tsrange(appointment_datetime, appointment_end) WITH &&) "
            "WHERE (booking_status <> 'CANCELLED')"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap")
    op.drop_index(op.f("ix_bookings_confirmation_token"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_booking_status"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_email"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_appointment_end"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_appointment_datetime"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_provider_id"), table_name="bookings")
    op.drop_table("bookings")
    op.drop_index(op.f("ix_time_off_end_datetime"), table_name="time_off")
    op.drop_index(op.f("ix_time_off_start_datetime"), table_name="time_off")
    op.drop_index(op.f("ix_time_off_provider_id"), table_name="time_off")
    op.drop_table("time_off")
    op.drop_index(op.f("ix_availability_rules_day_of_week"), table_name="availability_rules")
    op.drop_index(op.f("ix_availability_rules_provider_id"), table_name="availability_rules")
    op.drop_table("availability_rules")
    op.drop_table("session_types")
    op.drop_index(op.f("ix_providers_email"), table_name="providers")
    op.drop_table("providers")
    bind = op.get_bind()
    for enum in (payment_status, booking_status, day_of_week, modality):
        enum.drop(bind, checkfirst=True)
