"""Doctor model definition using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

metadata = MetaData()

doctors = Table(
    "doctors",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    # Verification
    Column(
        "status",
        String(30),
        nullable=False,
        server_default=text("'pending_verification'"),
        index=True,
    ),
    Column("accepting_bookings", Boolean, nullable=False, server_default=text("true")),
    # Fees and consultation
    Column("consultation_fee", Numeric(10, 2), nullable=False, server_default=text("0")),
    Column("online_consultation_fee", Numeric(10, 2)),
    Column("consultation_duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("consultation_types", JSON, nullable=False),
    # Example: ["online", "offline"]
    Column("weekly_availability", JSON),
    # Example: {"monday": [{"start": "09:00", "end": "13:00"}], "sunday": []}
    # Emergency routing
    Column("city", String(100), index=True),
    Column("is_emergency_available", Boolean, nullable=False, server_default=text("false")),
    Column("rating", Numeric(3, 2)),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint(
        "status IN ('pending_verification', 'verified', 'suspended', 'inactive')",
        name="doctors_status_check",
    ),
)

Index(
    "idx_doctors_emergency_city",
    doctors.c.city,
    postgresql_where=doctors.c.is_emergency_available.is_(True),
)
