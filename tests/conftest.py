from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient

# Load environment variables from .env file
load_dotenv()

from medibook.config import settings
from medibook.core.permissions import Actor, UserRole
from medibook.domain.clinics import Clinic
from medibook.domain.doctors import Doctor
from medibook.services.booking_service import BookingService
from tests.factories import NOW, FrozenClock, auth_headers_for, make_clinic, make_doctor
from tests.fakes import (
    InMemoryAppointmentRepository,
    InMemoryClinicRepository,
    InMemoryDoctorRepository,
    RecordingNotificationService,
)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def booking_settings():
    """Application settings with payments off and the default booking rules."""
    return settings.model_copy(
        update={
            "payments_enabled": False,
            "notifications_enabled": True,
            "schedule_timezone": "UTC",
            "min_slot_duration_minutes": 15,
            "reschedule_notice_minutes": 120,
            "min_booking_lead_minutes": 0,
            "max_advance_booking_days": 90,
            "max_active_appointments_per_user": 5,
            "full_refund_notice_hours": 24,
            "late_cancellation_refund_ratio": 0.5,
            "follow_up_window_days": 30,
            "emergency_fee_multiplier": 1.5,
            "availability_search_days": 14,
        }
    )


@pytest.fixture
def doctor() -> Doctor:
    return make_doctor()


@pytest.fixture
def clinic() -> Clinic:
    return make_clinic()


@pytest.fixture
def appointments() -> InMemoryAppointmentRepository:
    return InMemoryAppointmentRepository()


@pytest.fixture
def doctors(doctor) -> InMemoryDoctorRepository:
    return InMemoryDoctorRepository(doctor)


@pytest.fixture
def clinics(clinic) -> InMemoryClinicRepository:
    return InMemoryClinicRepository(clinic)


@pytest.fixture
def notifications() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def service(
    appointments, doctors, clinics, notifications, booking_settings, clock
) -> BookingService:
    return BookingService(
        appointments=appointments,
        doctors=doctors,
        clinics=clinics,
        notifications=notifications,
        settings=booking_settings,
        clock=clock,
    )


@pytest.fixture
def patient() -> Actor:
    return Actor(user_id=uuid4())


@pytest.fixture
def other_patient() -> Actor:
    return Actor(user_id=uuid4())


@pytest.fixture
def doctor_actor(doctor) -> Actor:
    return Actor(user_id=uuid4(), role=UserRole.DOCTOR, doctor_id=doctor.id)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def auth_headers(patient) -> dict[str, str]:
    """Bearer headers for the default patient."""
    return auth_headers_for(patient)


@pytest_asyncio.fixture
async def client(service, doctors, clinics) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose booking stack runs on the in-memory fakes."""
    from medibook.dependencies import (
        booking_rate_limit,
        get_booking_service,
        get_clinic_repository,
        get_doctor_repository,
    )
    from medibook.main import app

    async def no_rate_limit() -> None:
        return None

    app.dependency_overrides[get_booking_service] = lambda: service
    app.dependency_overrides[get_doctor_repository] = lambda: doctors
    app.dependency_overrides[get_clinic_repository] = lambda: clinics
    app.dependency_overrides[booking_rate_limit] = no_rate_limit

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
