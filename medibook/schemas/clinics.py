"""Clinic schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from medibook.domain.clinics import Clinic, ClinicStatus, WorkingHours


class ClinicCreate(BaseModel):
    """Schema for registering a clinic."""

    name: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1)
    city: str | None = Field(None, max_length=100)
    status: ClinicStatus = ClinicStatus.ACTIVE
    working_hours: dict[str, WorkingHours] = Field(default_factory=dict)

    def to_entity(self) -> Clinic:
        return Clinic(**self.model_dump())


class ClinicResponse(BaseModel):
    """Clinic response schema."""

    id: UUID
    name: str
    address: str
    city: str | None = None
    status: ClinicStatus
    working_hours: dict[str, WorkingHours]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
