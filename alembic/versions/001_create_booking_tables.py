"""Create doctors, clinics and appointments tables.

Revision ID: 001
Revises:
Create Date: 2025-02-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
    # Needed to mix the doctor_id equality with the range overlap in one GiST index.
    op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    op.create_table(
        "doctors",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("specialization", sa.String(length=200), nullable=True),
        sa.Column(
            "status",
            sa.String(length=30),
            server_default=sa.text("'pending_verification'"),
            nullable=False,
        ),
        sa.Column("accepting_bookings", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("consultation_fee", sa.Numeric(10, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("online_consultation_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column(
            "consultation_duration_minutes",
            sa.Integer(),
            server_default=sa.text("30"),
            nullable=False,
        ),
        sa.Column("consultation_types", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("weekly_availability", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column(
            "is_emergency_available",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("rating", sa.Numeric(3, 2), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending_verification', 'verified', 'suspended', 'inactive')",
            name="doctors_status_check",
        ),
    )
    op.create_index("ix_doctors_specialization", "doctors", ["specialization"])
    op.create_index("ix_doctors_status", "doctors", ["status"])
    op.create_index("ix_doctors_city", "doctors", ["city"])
    op.create_index(
        "idx_doctors_emergency_city",
        "doctors",
        ["city"],
        postgresql_where=sa.text("is_emergency_available IS TRUE"),
    )

    op.create_table(
        "clinics",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("working_hours", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "status",
            sa.String(length=30),
            server_default=sa.text("'active'"),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('active', 'inactive', 'pending_verification', 'suspended')",
            name="clinics_status_check",
        ),
    )
    op.create_index("ix_clinics_name", "clinics", ["name"])
    op.create_index("ix_clinics_city", "clinics", ["city"])
    op.create_index("ix_clinics_status", "clinics", ["status"])

    op.create_table(
        "appointments",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("clinic_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("parent_appointment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("start_time", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("end_time", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("type", postgresql.VARCHAR(length=10), nullable=False),
        sa.Column(
            "status",
            postgresql.VARCHAR(length=20),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("symptoms", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_emergency", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("consultation_fee", sa.Numeric(10, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("payment_info", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("cancellation_info", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("consultation_info", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("confirmation_code", postgresql.VARCHAR(length=20), nullable=False),
        sa.Column("booked_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("confirmed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("prescription_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("follow_up_date", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("follow_up_notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("confirmation_code", name="appointments_confirmation_code_key"),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], name="fk_appointments_doctor"),
        sa.ForeignKeyConstraint(
            ["clinic_id"], ["clinics.id"], name="fk_appointments_clinic", ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["parent_appointment_id"], ["appointments.id"], name="fk_appointments_parent"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'in_progress', 'completed', "
            "'cancelled', 'no_show', 'rescheduled')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint("type IN ('online', 'offline')", name="appointments_type_check"),
        sa.CheckConstraint("start_time < end_time", name="appointments_slot_order_check"),
    )
    op.create_index("ix_appointments_user_id", "appointments", ["user_id"])
    op.create_index(
        "idx_appointments_doctor_start", "appointments", ["doctor_id", "start_time"]
    )

    # No two live appointments of the same doctor may overlap. Half-open ranges
    # let back-to-back slots coexist.
    op.execute(
        """
        ALTER TABLE appointments
        ADD CONSTRAINT appointments_doctor_no_overlap
        EXCLUDE USING gist (
            doctor_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status <> 'cancelled' AND deleted_at IS NULL)
        """
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("appointments")
    op.drop_table("clinics")
    op.drop_table("doctors")
