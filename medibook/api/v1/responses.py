"""Response envelope and booking outcome to HTTP mapping."""

from typing import Generic, TypeVar

from fastapi import status
from pydantic import BaseModel

from medibook.core.exceptions import BookingFailed
from medibook.schemas.appointments import AppointmentResponse
from medibook.services.booking_types import BookingError, BookingResult

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope: ``{success, message, data}``."""

    success: bool = True
    message: str = ""
    data: T | None = None


BOOKING_ERROR_STATUS: dict[BookingError, int] = {
    # Not found
    BookingError.DOCTOR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingError.CLINIC_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingError.APPOINTMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    # Conflict
    BookingError.TIME_SLOT_OCCUPIED: status.HTTP_409_CONFLICT,
    BookingError.BOOKING_CONFLICT: status.HTTP_409_CONFLICT,
    # Business rules and state
    BookingError.DOCTOR_NOT_AVAILABLE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.DOCTOR_NOT_VERIFIED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.CLINIC_CLOSED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.INVALID_TIME_SLOT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.CANNOT_CANCEL: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.CANNOT_RESCHEDULE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.INVALID_STATE_TRANSITION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.EMERGENCY_BOOKING_FAILED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.FOLLOW_UP_NOT_ALLOWED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    BookingError.BOOKING_LIMIT_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    # Authorization
    BookingError.UNAUTHORIZED_ACCESS: status.HTTP_403_FORBIDDEN,
    # Validation
    BookingError.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    # Infrastructure
    BookingError.PAYMENT_FAILED: status.HTTP_502_BAD_GATEWAY,
    BookingError.REFUND_FAILED: status.HTTP_502_BAD_GATEWAY,
    BookingError.DATABASE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_error(error: BookingError, message: str, data: dict | None = None) -> None:
    """Raise the HTTP error for a failed booking outcome; no-op on success."""
    if error == BookingError.SUCCESS:
        return
    raise BookingFailed(
        error.value,
        message,
        BOOKING_ERROR_STATUS.get(error, status.HTTP_500_INTERNAL_SERVER_ERROR),
        data,
    )


def appointment_envelope(result: BookingResult) -> ApiResponse[AppointmentResponse]:
    """
    Unwrap a booking result into the success envelope.

    Raises:
        BookingFailed: For any non-success outcome; the appointment is attached
            when the failure happened after it was persisted
    """
    if not result.success:
        data = None
        if result.appointment is not None and result.error in (
            BookingError.PAYMENT_FAILED,
            BookingError.REFUND_FAILED,
        ):
            appointment = AppointmentResponse.from_entity(result.appointment)
            data = {"appointment": appointment.model_dump(mode="json")}
        raise_for_error(result.error, result.message, data)
    return ApiResponse(
        message=result.message,
        data=AppointmentResponse.from_entity(result.appointment),
    )
