"""Appointment schemas for request/response validation."""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer, field_validator

from medibook.domain.appointments import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    CancellationInfo,
    CancellationReason,
    ConsultationInfo,
    PaymentInfo,
)


def _ensure_utc(v: datetime | None) -> datetime | None:
    if v is None:
        return v
    if v.tzinfo is None:
        return v.replace(tzinfo=UTC)
    return v.astimezone(UTC)


# ============================================================================
# Requests
# ============================================================================


class BookingRequest(BaseModel):
    """Schema for booking an appointment with a specific doctor."""

    doctor_id: UUID
    clinic_id: UUID | None = None
    preferred_start_time: datetime
    type: AppointmentType
    symptoms: str | None = Field(None, max_length=2000)
    notes: str | None = Field(None, max_length=1000)

    @field_validator("preferred_start_time")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Interpret naive times as UTC."""
        return _ensure_utc(v)


class EmergencyBookingRequest(BaseModel):
    """Schema for an emergency booking routed to any available doctor."""

    city: str | None = Field(None, max_length=100)
    type: AppointmentType = AppointmentType.ONLINE
    symptoms: str = Field(..., min_length=1, max_length=2000)
    preferred_start_time: datetime | None = None
    notes: str | None = Field(None, max_length=1000)

    @field_validator("preferred_start_time")
    @classmethod
    def normalize_start(cls, v: datetime | None) -> datetime | None:
        """Interpret naive times as UTC."""
        return _ensure_utc(v)


class FollowUpRequest(BaseModel):
    """Schema for booking a follow-up of a completed appointment."""

    preferred_start_time: datetime
    notes: str | None = Field(None, max_length=1000)

    @field_validator("preferred_start_time")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Interpret naive times as UTC."""
        return _ensure_utc(v)


class RescheduleRequest(BaseModel):
    """Schema for moving an appointment to a new start time."""

    new_start_time: datetime
    reason: str | None = Field(None, max_length=500)

    @field_validator("new_start_time")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Interpret naive times as UTC."""
        return _ensure_utc(v)


class CancellationRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: CancellationReason = CancellationReason.PATIENT_REQUEST
    description: str | None = Field(None, max_length=1000)


class PaymentVerificationRequest(BaseModel):
    """Gateway callback payload confirming a payment."""

    payment_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    method: str | None = None


# ============================================================================
# Responses
# ============================================================================


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    user_id: UUID
    doctor_id: UUID
    clinic_id: UUID | None
    parent_appointment_id: UUID | None = None
    start_time: datetime
    end_time: datetime
    type: AppointmentType
    status: AppointmentStatus
    symptoms: str | None = None
    notes: str | None = None
    is_emergency: bool
    consultation_fee: Decimal
    payment_info: PaymentInfo
    cancellation_info: CancellationInfo | None = None
    consultation_info: ConsultationInfo | None = None
    confirmation_code: str
    booked_at: datetime
    confirmed_at: datetime | None = None
    follow_up_date: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("consultation_fee", when_used="json")
    def serialize_decimal(self, value: Decimal) -> float:
        """Serialize Decimal to float for JSON."""
        return float(value)

    @classmethod
    def from_entity(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls.model_validate(appointment)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class BookingResponse(BaseModel):
    """Booked appointment plus the checkout link, when payments are on."""

    appointment: AppointmentResponse
    payment_url: str | None = None


class AvailabilitySlotResponse(BaseModel):
    """A single bookable slot."""

    start: datetime
    end: datetime
    fee: Decimal

    model_config = {"from_attributes": True}

    @field_serializer("fee", when_used="json")
    def serialize_fee(self, value: Decimal) -> float:
        """Serialize Decimal to float for JSON."""
        return float(value)


class QueueResponse(BaseModel):
    """Queue position and the wait it implies."""

    appointment_id: UUID
    position: int
    estimated_wait_minutes: int
