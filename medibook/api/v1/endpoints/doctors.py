"""Doctor endpoints: registry, availability and schedule."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from medibook.api.v1.responses import ApiResponse, raise_for_error
from medibook.core.exceptions import ForbiddenException, NotFoundException
from medibook.core.permissions import can_view_doctor_schedule
from medibook.dependencies import AdminActor, BookingServiceDep, CurrentActor, Doctors
from medibook.domain.appointments import AppointmentType
from medibook.schemas.appointments import AppointmentResponse, AvailabilitySlotResponse
from medibook.schemas.doctors import DoctorCreate, DoctorResponse, DoctorStatusUpdate
from medibook.services.booking_types import AvailabilityResult

router = APIRouter()


def _slots_envelope(result: AvailabilityResult) -> ApiResponse[list[AvailabilitySlotResponse]]:
    raise_for_error(result.error, result.message)
    return ApiResponse(
        data=[AvailabilitySlotResponse.model_validate(slot) for slot in result.slots],
    )


@router.post(
    "/",
    response_model=ApiResponse[DoctorResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register doctor",
)
async def create_doctor(
    data: DoctorCreate,
    admin: AdminActor,
    doctors: Doctors,
) -> ApiResponse[DoctorResponse]:
    """Register a doctor profile. New doctors start pending verification."""
    doctor = await doctors.create(data.to_entity())
    return ApiResponse(message="Doctor registered", data=DoctorResponse.model_validate(doctor))


@router.get(
    "/{doctor_id}",
    response_model=ApiResponse[DoctorResponse],
    status_code=status.HTTP_200_OK,
    summary="Get doctor by ID",
)
async def get_doctor(
    doctor_id: UUID,
    actor: CurrentActor,
    doctors: Doctors,
) -> ApiResponse[DoctorResponse]:
    doctor = await doctors.get(doctor_id)
    if doctor is None:
        raise NotFoundException("Doctor not found")
    return ApiResponse(data=DoctorResponse.model_validate(doctor))


@router.patch(
    "/{doctor_id}/status",
    response_model=ApiResponse[DoctorResponse],
    status_code=status.HTTP_200_OK,
    summary="Update doctor verification status",
)
async def update_doctor_status(
    doctor_id: UUID,
    data: DoctorStatusUpdate,
    admin: AdminActor,
    doctors: Doctors,
) -> ApiResponse[DoctorResponse]:
    """Verify, suspend or deactivate a doctor. Admin only."""
    doctor = await doctors.update_status(doctor_id, data.status)
    if doctor is None:
        raise NotFoundException("Doctor not found")
    return ApiResponse(
        message="Doctor status updated", data=DoctorResponse.model_validate(doctor)
    )


@router.get(
    "/{doctor_id}/availability",
    response_model=ApiResponse[list[AvailabilitySlotResponse]],
    status_code=status.HTTP_200_OK,
    summary="Doctor availability",
)
async def get_doctor_availability(
    doctor_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
    start_date: date = Query(...),
    end_date: date = Query(...),
    appointment_type: AppointmentType | None = Query(None, alias="type"),
    clinic_id: UUID | None = Query(None),
) -> ApiResponse[list[AvailabilitySlotResponse]]:
    """
    Free slots for a doctor between two days, inclusive, in ascending order.

    Args:
        doctor_id: Doctor ID
        actor: Authenticated caller
        service: Booking service
        start_date: First day
        end_date: Last day, at most 31 days after the first
        appointment_type: Consultation type, defaults to the doctor's first
        clinic_id: Limit offline slots to this clinic's working hours

    Returns:
        Available slots with their fee
    """
    result = await service.get_doctor_availability(
        doctor_id, start_date, end_date, appointment_type, clinic_id
    )
    return _slots_envelope(result)


@router.get(
    "/{doctor_id}/next-slots",
    response_model=ApiResponse[list[AvailabilitySlotResponse]],
    status_code=status.HTTP_200_OK,
    summary="Next available slots",
)
async def get_next_available_slots(
    doctor_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
    count: int = Query(5, ge=1, le=50),
    appointment_type: AppointmentType | None = Query(None, alias="type"),
    clinic_id: UUID | None = Query(None),
) -> ApiResponse[list[AvailabilitySlotResponse]]:
    result = await service.get_next_available_slots(
        doctor_id, count, appointment_type, clinic_id
    )
    return _slots_envelope(result)


@router.get(
    "/{doctor_id}/schedule",
    response_model=ApiResponse[list[AppointmentResponse]],
    status_code=status.HTTP_200_OK,
    summary="Doctor schedule for a day",
)
async def get_doctor_schedule(
    doctor_id: UUID,
    actor: CurrentActor,
    service: BookingServiceDep,
    day: date = Query(...),
) -> ApiResponse[list[AppointmentResponse]]:
    """A doctor's non-cancelled appointments for one day. The doctor or admins only."""
    if not can_view_doctor_schedule(actor, doctor_id):
        raise ForbiddenException("Not allowed to view this schedule")
    result = await service.get_doctor_schedule(doctor_id, day)
    raise_for_error(result.error, result.message)
    return ApiResponse(data=[AppointmentResponse.from_entity(a) for a in result.items])
