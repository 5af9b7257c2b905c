"""Clinic endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from medibook.api.v1.responses import ApiResponse
from medibook.core.exceptions import NotFoundException
from medibook.dependencies import AdminActor, Clinics, CurrentActor
from medibook.schemas.clinics import ClinicCreate, ClinicResponse

router = APIRouter()


@router.post(
    "/",
    response_model=ApiResponse[ClinicResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register clinic",
)
async def create_clinic(
    data: ClinicCreate,
    admin: AdminActor,
    clinics: Clinics,
) -> ApiResponse[ClinicResponse]:
    """
    Register a clinic with its weekly working hours.

    Args:
        data: Clinic details and working hours per weekday
        admin: Authenticated administrator
        clinics: Clinic repository

    Returns:
        Created clinic
    """
    clinic = await clinics.create(data.to_entity())
    return ApiResponse(message="Clinic registered", data=ClinicResponse.model_validate(clinic))


@router.get(
    "/{clinic_id}",
    response_model=ApiResponse[ClinicResponse],
    status_code=status.HTTP_200_OK,
    summary="Get clinic by ID",
)
async def get_clinic(
    clinic_id: UUID,
    actor: CurrentActor,
    clinics: Clinics,
) -> ApiResponse[ClinicResponse]:
    clinic = await clinics.get(clinic_id)
    if clinic is None:
        raise NotFoundException("Clinic not found")
    return ApiResponse(data=ClinicResponse.model_validate(clinic))
