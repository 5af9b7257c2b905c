"""Result types returned by the booking service."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from medibook.domain.appointments import Appointment
from medibook.services.availability import AvailabilitySlot


class BookingError(str, Enum):
    """Outcome codes for booking operations."""

    SUCCESS = "success"
    # Not found
    DOCTOR_NOT_FOUND = "doctor_not_found"
    CLINIC_NOT_FOUND = "clinic_not_found"
    APPOINTMENT_NOT_FOUND = "appointment_not_found"
    # Conflict
    TIME_SLOT_OCCUPIED = "time_slot_occupied"
    BOOKING_CONFLICT = "booking_conflict"
    # Business rules and state
    DOCTOR_NOT_AVAILABLE = "doctor_not_available"
    DOCTOR_NOT_VERIFIED = "doctor_not_verified"
    CLINIC_CLOSED = "clinic_closed"
    INVALID_TIME_SLOT = "invalid_time_slot"
    CANNOT_CANCEL = "cannot_cancel"
    CANNOT_RESCHEDULE = "cannot_reschedule"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    EMERGENCY_BOOKING_FAILED = "emergency_booking_failed"
    FOLLOW_UP_NOT_ALLOWED = "follow_up_not_allowed"
    BOOKING_LIMIT_EXCEEDED = "booking_limit_exceeded"
    # Authorization
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    # Validation
    VALIDATION_ERROR = "validation_error"
    # Infrastructure
    PAYMENT_FAILED = "payment_failed"
    REFUND_FAILED = "refund_failed"
    DATABASE_ERROR = "database_error"


@dataclass
class BookingResult:
    """Outcome of a booking operation; ``appointment`` is set whenever one exists."""

    error: BookingError
    message: str = ""
    appointment: Appointment | None = None
    payment_url: str | None = None

    @property
    def success(self) -> bool:
        return self.error == BookingError.SUCCESS

    @classmethod
    def ok(
        cls, appointment: Appointment, message: str = "", payment_url: str | None = None
    ) -> "BookingResult":
        return cls(BookingError.SUCCESS, message, appointment, payment_url)

    @classmethod
    def fail(
        cls, error: BookingError, message: str, appointment: Appointment | None = None
    ) -> "BookingResult":
        return cls(error, message, appointment)


@dataclass
class AvailabilityResult:
    """Outcome of an availability query. ``slots`` is a lazy iterator."""

    error: BookingError
    message: str = ""
    slots: Iterator[AvailabilitySlot] = field(default_factory=lambda: iter(()))

    @property
    def success(self) -> bool:
        return self.error == BookingError.SUCCESS


@dataclass
class AppointmentListResult:
    """A page of appointments; ``total`` counts all matches, not just this page."""

    error: BookingError
    message: str = ""
    items: list[Appointment] = field(default_factory=list)
    total: int = 0

    @property
    def success(self) -> bool:
        return self.error == BookingError.SUCCESS


@dataclass
class QueueResult:
    """Place in the doctor's queue for the day; position 0 means next in line."""

    error: BookingError
    message: str = ""
    position: int | None = None
    estimated_wait: timedelta | None = None

    @property
    def success(self) -> bool:
        return self.error == BookingError.SUCCESS
