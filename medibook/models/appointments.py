"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Index,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID, VARCHAR

metadata = MetaData()

appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # References (by id only, owned by other subsystems)
    Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
    Column("doctor_id", UUID(as_uuid=True), nullable=False),
    Column("clinic_id", UUID(as_uuid=True), nullable=True),
    Column("parent_appointment_id", UUID(as_uuid=True), nullable=True),
    # Slot
    Column("appointment_date", Date, nullable=False),
    Column("start_time", TIMESTAMP(timezone=True), nullable=False),
    Column("end_time", TIMESTAMP(timezone=True), nullable=False),
    Column("type", VARCHAR(10), nullable=False),
    Column("status", VARCHAR(20), nullable=False, server_default=text("'pending'")),
    # Details
    Column("symptoms", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("is_emergency", Boolean, nullable=False, server_default=text("false")),
    Column("consultation_fee", Numeric(10, 2), nullable=False, server_default=text("0")),
    # Embedded values
    Column("payment_info", JSON, nullable=False),
    Column("cancellation_info", JSON, nullable=True),
    Column("consultation_info", JSON, nullable=True),
    Column("confirmation_code", VARCHAR(20), nullable=False, unique=True),
    Column("booked_at", TIMESTAMP(timezone=True), nullable=False),
    Column("confirmed_at", TIMESTAMP(timezone=True), nullable=True),
    # Follow-up linkage
    Column("prescription_id", UUID(as_uuid=True), nullable=True),
    Column("follow_up_date", TIMESTAMP(timezone=True), nullable=True),
    Column("follow_up_notes", Text, nullable=True),
    # Optimistic concurrency
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Soft delete (healthcare compliance)
    Column("deleted_at", TIMESTAMP(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'in_progress', 'completed', "
        "'cancelled', 'no_show', 'rescheduled')",
        name="appointments_status_check",
    ),
    CheckConstraint("type IN ('online', 'offline')", name="appointments_type_check"),
    CheckConstraint("start_time < end_time", name="appointments_slot_order_check"),
)

Index("idx_appointments_doctor_start", appointments.c.doctor_id, appointments.c.start_time)

# Name of the exclusion constraint created in the migration; the repository
# recognises it to translate a lost race into a slot conflict.
NO_OVERLAP_CONSTRAINT = "appointments_doctor_no_overlap"
