"""Custom application exceptions."""

from collections.abc import Iterable


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class RateLimitException(AppException):
    """Rate limit exceeded exception."""

    def __init__(self, message: str = "Rate limit exceeded"):
        """Initialize with 429 status code."""
        super().__init__(message, status_code=429)


# ============================================================================
# Domain errors
# ============================================================================


class InvalidStateTransition(Exception):
    """Raised when an appointment transition is attempted from an illegal state."""

    def __init__(self, current_status: str, operation: str, allowed_from: Iterable[str]):
        self.current_status = current_status
        self.operation = operation
        self.allowed_from = tuple(allowed_from)
        allowed = ", ".join(self.allowed_from) or "none"
        super().__init__(
            f"Cannot {operation} appointment in status {current_status} (allowed from: {allowed})"
        )


# ============================================================================
# Storage / collaborator errors
# ============================================================================


class StorageError(Exception):
    """Raised when the storage layer is unavailable or fails unexpectedly."""


class SlotConflictError(StorageError):
    """Raised when a write would overlap an existing booking for the same doctor."""

    def __init__(self, doctor_id: str, message: str = "Time slot is already booked"):
        self.doctor_id = doctor_id
        super().__init__(message)


class ConcurrentModificationError(StorageError):
    """Raised when an optimistic version check fails on update."""

    def __init__(self, appointment_id: str, expected_version: int):
        self.appointment_id = appointment_id
        self.expected_version = expected_version
        super().__init__(
            f"Appointment {appointment_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class PaymentGatewayError(Exception):
    """Raised when the payment gateway rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BookingFailed(AppException):
    """A booking operation returned a non-success outcome, rendered as an HTTP error."""

    def __init__(self, error_code: str, message: str, status_code: int, data: dict | None = None):
        """Carry the booking error code and any partial result."""
        self.error_code = error_code
        self.data = data
        super().__init__(message, status_code=status_code)
