"""Doctor aggregate as seen by the booking engine."""

from datetime import datetime, time
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from medibook.domain.appointments import AppointmentType

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class DoctorStatus(str, Enum):
    """Doctor verification status enumeration."""

    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class TimeWindow(BaseModel):
    """A wall-clock window within a single day, e.g. 09:00-13:00."""

    start: time
    end: time

    @model_validator(mode="after")
    def validate_order(self) -> "TimeWindow":
        if self.start >= self.end:
            raise ValueError("window start must be before end")
        return self


class Doctor(BaseModel):
    """Doctor profile fields consumed by booking and availability."""

    id: UUID = Field(default_factory=uuid4)
    full_name: str
    specialization: str | None = None
    status: DoctorStatus = DoctorStatus.PENDING_VERIFICATION
    accepting_bookings: bool = True

    consultation_fee: Decimal = Decimal("0.00")
    online_consultation_fee: Decimal | None = None
    consultation_duration_minutes: int = Field(default=30, ge=15, le=180)
    consultation_types: list[AppointmentType] = Field(
        default_factory=lambda: [AppointmentType.ONLINE, AppointmentType.OFFLINE]
    )
    # Empty pattern means the doctor has not restricted their hours.
    weekly_availability: dict[str, list[TimeWindow]] = Field(default_factory=dict)

    city: str | None = None
    is_emergency_available: bool = False
    rating: Decimal | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("weekly_availability", mode="before")
    @classmethod
    def default_pattern(cls, v):
        return v or {}

    @field_validator("weekly_availability")
    @classmethod
    def validate_weekdays(cls, v: dict[str, list[TimeWindow]]) -> dict[str, list[TimeWindow]]:
        """Normalize weekday keys to lowercase names."""
        normalized = {}
        for day, windows in v.items():
            key = day.lower()
            if key not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day}")
            normalized[key] = sorted(windows, key=lambda w: w.start)
        return normalized

    @property
    def is_verified(self) -> bool:
        return self.status == DoctorStatus.VERIFIED

    def accepts_bookings(self) -> bool:
        """Only verified doctors who have not paused bookings can be booked."""
        return self.is_verified and self.accepting_bookings

    def supports(self, appointment_type: AppointmentType) -> bool:
        return appointment_type in self.consultation_types

    def fee_for(
        self, appointment_type: AppointmentType, emergency_multiplier: float | None = None
    ) -> Decimal:
        """
        Consultation fee for a booking.

        Args:
            appointment_type: Online consultations use the online fee when one is set
            emergency_multiplier: Applied on top of the base fee for emergency bookings

        Returns:
            Fee rounded to two decimal places
        """
        fee = self.consultation_fee
        if appointment_type == AppointmentType.ONLINE and self.online_consultation_fee is not None:
            fee = self.online_consultation_fee
        if emergency_multiplier:
            fee = fee * Decimal(str(emergency_multiplier))
        return fee.quantize(Decimal("0.01"))

    def has_weekly_pattern(self) -> bool:
        return any(self.weekly_availability.values())

    def windows_on(self, weekday: int) -> list[TimeWindow]:
        """Windows for a weekday index (Monday is 0)."""
        return self.weekly_availability.get(WEEKDAYS[weekday], [])
