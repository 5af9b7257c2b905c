"""API v1 router configuration."""

from fastapi import APIRouter

from medibook.api.v1.endpoints import appointments, clinics, doctors, health

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(doctors.router, prefix="/doctors", tags=["Doctors"])
api_router.include_router(clinics.router, prefix="/clinics", tags=["Clinics"])
