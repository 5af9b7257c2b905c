"""Doctor schemas for request/response validation."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer

from medibook.domain.appointments import AppointmentType
from medibook.domain.doctors import Doctor, DoctorStatus, TimeWindow


class DoctorCreate(BaseModel):
    """Schema for registering a doctor."""

    full_name: str = Field(..., min_length=1, max_length=200)
    specialization: str | None = Field(None, max_length=200)
    consultation_fee: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    online_consultation_fee: Decimal | None = Field(None, ge=0, decimal_places=2)
    consultation_duration_minutes: int = Field(30, ge=15, le=180)
    consultation_types: list[AppointmentType] = Field(
        default_factory=lambda: [AppointmentType.ONLINE, AppointmentType.OFFLINE],
        min_length=1,
    )
    weekly_availability: dict[str, list[TimeWindow]] = Field(default_factory=dict)
    city: str | None = Field(None, max_length=100)
    is_emergency_available: bool = False
    accepting_bookings: bool = True

    def to_entity(self) -> Doctor:
        return Doctor(**self.model_dump())


class DoctorStatusUpdate(BaseModel):
    """Schema for changing a doctor's verification status."""

    status: DoctorStatus


class DoctorResponse(BaseModel):
    """Doctor response schema."""

    id: UUID
    full_name: str
    specialization: str | None = None
    status: DoctorStatus
    accepting_bookings: bool
    consultation_fee: Decimal
    online_consultation_fee: Decimal | None = None
    consultation_duration_minutes: int
    consultation_types: list[AppointmentType]
    weekly_availability: dict[str, list[TimeWindow]]
    city: str | None = None
    is_emergency_available: bool
    rating: Decimal | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_serializer("consultation_fee", "online_consultation_fee", "rating", when_used="json")
    def serialize_decimal(self, value: Decimal | None) -> float | None:
        """Serialize Decimal to float for JSON."""
        return float(value) if value is not None else None


class AvailabilityQuery(BaseModel):
    """Date range for an availability search."""

    start_date: date
    end_date: date
    type: AppointmentType | None = None
    clinic_id: UUID | None = None
