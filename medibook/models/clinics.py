"""Clinic model definition using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

metadata = MetaData()

clinics = Table(
    "clinics",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    Column("name", String(255), nullable=False, index=True),
    Column("address", Text, nullable=False),
    Column("city", String(100), index=True),
    # Working hours per weekday, break excluded from bookable time
    Column("working_hours", JSON),
    # Example: {"monday": {"open": "09:00", "close": "18:00", "break_start": "13:00",
    #           "break_end": "14:00"}, "sunday": {"is_closed": true}}
    Column("status", String(30), nullable=False, server_default=text("'active'"), index=True),
    # Metadata
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    ),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("NOW()"),
    ),
    CheckConstraint(
        "status IN ('active', 'inactive', 'pending_verification', 'suspended')",
        name="clinics_status_check",
    ),
)
