"""Appointment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from medibook.api.v1.responses import ApiResponse, appointment_envelope, raise_for_error
from medibook.dependencies import BookingRateLimit, BookingServiceDep, CurrentActor
from medibook.domain.appointments import AppointmentStatus
from medibook.schemas.appointments import (
    AppointmentListResponse,
    AppointmentResponse,
    BookingRequest,
    BookingResponse,
    CancellationRequest,
    EmergencyBookingRequest,
    FollowUpRequest,
    PaymentVerificationRequest,
    QueueResponse,
    RescheduleRequest,
)
from medibook.services.booking_types import BookingResult

router = APIRouter()


def _booking_envelope(result: BookingResult) -> ApiResponse[BookingResponse]:
    envelope = appointment_envelope(result)
    return ApiResponse(
        message=envelope.message,
        data=BookingResponse(appointment=envelope.data, payment_url=result.payment_url),
    )


@router.post(
    "/",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[BookingRateLimit],
    summary="Book appointment",
)
async def book_appointment(
    data: BookingRequest,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[BookingResponse]:
    """
    Book an appointment with a doctor for the authenticated user.

    Args:
        data: Doctor, optional clinic, preferred start time and consultation type
        actor: Authenticated caller
        service: Booking service

    Returns:
        The PENDING appointment and, when payments are enabled, the checkout URL
    """
    result = await service.book_appointment(actor.user_id, data)
    return _booking_envelope(result)


@router.post(
    "/emergency",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[BookingRateLimit],
    summary="Book emergency appointment",
)
async def book_emergency_appointment(
    data: EmergencyBookingRequest,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[BookingResponse]:
    """Book the first emergency-available doctor, optionally in a given city."""
    result = await service.book_emergency_appointment(actor.user_id, data)
    return _booking_envelope(result)


@router.get(
    "/",
    response_model=ApiResponse[AppointmentListResponse],
    status_code=status.HTTP_200_OK,
    summary="List my appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: BookingServiceDep,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> ApiResponse[AppointmentListResponse]:
    """
    List the authenticated user's appointments, most recent first.

    Args:
        actor: Authenticated caller
        service: Booking service
        status_filter: Filter by status
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    result = await service.list_user_appointments(
        actor.user_id,
        status=status_filter,
        skip=(page - 1) * page_size,
        limit=page_size,
    )
    raise_for_error(result.error, result.message)
    return ApiResponse(
        data=AppointmentListResponse(
            total=result.total,
            page=page,
            page_size=page_size,
            items=[AppointmentResponse.from_entity(a) for a in result.items],
        )
    )


@router.get(
    "/{appointment_id}",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    """Get an appointment the caller is allowed to see."""
    return appointment_envelope(await service.get_appointment(actor, appointment_id))


@router.put(
    "/{appointment_id}/reschedule",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[BookingRateLimit],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    """
    Move an appointment to a new start time.

    Requires enough notice before the current start; the duration is kept.
    """
    result = await service.reschedule_appointment(actor, appointment_id, data)
    return appointment_envelope(result)


@router.post(
    "/{appointment_id}/cancel",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[BookingRateLimit],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: CancellationRequest,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    """Cancel an appointment that has not started; paid fees are refunded per policy."""
    result = await service.cancel_appointment(actor, appointment_id, data)
    return appointment_envelope(result)


@router.post(
    "/{appointment_id}/confirm",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Confirm appointment",
)
async def confirm_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    """Confirm a pending appointment. Doctor or admin only."""
    return appointment_envelope(await service.confirm_appointment(actor, appointment_id))


@router.post(
    "/{appointment_id}/start",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Start consultation",
)
async def start_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    return appointment_envelope(await service.start_appointment(actor, appointment_id))


@router.post(
    "/{appointment_id}/complete",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Complete consultation",
)
async def complete_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    return appointment_envelope(await service.complete_appointment(actor, appointment_id))


@router.post(
    "/{appointment_id}/no-show",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Mark no-show",
)
async def mark_no_show(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    return appointment_envelope(await service.mark_no_show(actor, appointment_id))


@router.post(
    "/{appointment_id}/follow-up",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[BookingRateLimit],
    summary="Book follow-up",
)
async def book_follow_up(
    appointment_id: UUID,
    data: FollowUpRequest,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[BookingResponse]:
    """Book a follow-up of a completed appointment with the same doctor."""
    result = await service.book_follow_up(actor, appointment_id, data)
    return _booking_envelope(result)


@router.post(
    "/{appointment_id}/payment-order",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_200_OK,
    summary="Create payment order",
)
async def create_payment_order(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[BookingResponse]:
    """Create a new checkout for an unpaid appointment, e.g. after a failed attempt."""
    result = await service.create_payment_order(actor, appointment_id)
    return _booking_envelope(result)


@router.post(
    "/{appointment_id}/payment/verify",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Verify payment",
)
async def verify_payment(
    appointment_id: UUID,
    data: PaymentVerificationRequest,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    """Verify the checkout signature and mark the fee as paid."""
    result = await service.verify_payment(actor, appointment_id, data)
    return appointment_envelope(result)


@router.get(
    "/{appointment_id}/queue",
    response_model=ApiResponse[QueueResponse],
    status_code=status.HTTP_200_OK,
    summary="Queue position",
)
async def get_queue_position(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[QueueResponse]:
    """Position in the doctor's queue for the day and the estimated wait."""
    access = await service.get_appointment(actor, appointment_id)
    raise_for_error(access.error, access.message)

    queue = await service.get_estimated_wait_time(appointment_id)
    raise_for_error(queue.error, queue.message)
    return ApiResponse(
        data=QueueResponse(
            appointment_id=appointment_id,
            position=queue.position,
            estimated_wait_minutes=int(queue.estimated_wait.total_seconds() // 60),
        )
    )


@router.delete(
    "/{appointment_id}",
    response_model=ApiResponse[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
) -> ApiResponse[AppointmentResponse]:
    """Soft-delete an appointment. Admin only; the record is kept for audit."""
    return appointment_envelope(await service.delete_appointment(actor, appointment_id))
