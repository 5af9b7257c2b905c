"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from medibook.config import settings
from medibook.core.exceptions import RateLimitException
from medibook.core.permissions import Actor, UserRole
from medibook.core.redis_client import CacheManager, RateLimiter, get_redis_client
from medibook.core.security import decode_access_token
from medibook.database import get_db
from medibook.repositories.appointments import SQLAppointmentRepository
from medibook.repositories.base import ClinicRepository, DoctorRepository
from medibook.repositories.clinics import SQLClinicRepository
from medibook.repositories.doctors import SQLDoctorRepository
from medibook.services.booking_service import BookingService
from medibook.services.notification_service import NotificationService
from medibook.services.payment_service import PaymentService

# Security
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Resolve the caller from the bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor with user id, role and, for doctors, the doctor profile id

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise _credentials_error()

    try:
        user_id = UUID(user_id_str)
        role = UserRole(payload.get("role", UserRole.PATIENT.value))
        doctor_id = UUID(payload["doctor_id"]) if payload.get("doctor_id") else None
    except ValueError:
        raise _credentials_error("Invalid token claims")

    return Actor(user_id=user_id, role=role, doctor_id=doctor_id)


def get_cache_manager() -> CacheManager:
    """Cache manager over the shared Redis client."""
    return CacheManager(get_redis_client())


def get_notification_service() -> NotificationService:
    return NotificationService(enabled=settings.notifications_enabled)


def get_payment_service() -> PaymentService | None:
    return PaymentService(settings) if settings.payments_enabled else None


def get_doctor_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
) -> DoctorRepository:
    return SQLDoctorRepository(db, cache)


def get_clinic_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
) -> ClinicRepository:
    return SQLClinicRepository(db, cache)


def get_booking_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
    payments: Annotated[PaymentService | None, Depends(get_payment_service)],
) -> BookingService:
    """Booking service wired to PostgreSQL storage for this request."""
    return BookingService(
        appointments=SQLAppointmentRepository(db),
        doctors=SQLDoctorRepository(db, cache),
        clinics=SQLClinicRepository(db, cache),
        notifications=notifications,
        settings=settings,
        payments=payments,
    )


async def booking_rate_limit(
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> None:
    """
    Per-user, per-endpoint limit on booking writes.

    Raises:
        RateLimitException: If the user exceeded the limit for this minute
    """
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    limiter = RateLimiter(get_redis_client())
    key = f"rate_limit:booking:{actor.user_id}:{request.method}:{endpoint}"
    if not limiter.check_rate_limit(key, settings.booking_rate_limit_per_minute, window=60):
        raise RateLimitException("Too many booking requests, please slow down")


def require_admin(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    """Allow only administrators."""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return actor


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(require_admin)]
BookingServiceDep = Annotated[BookingService, Depends(get_booking_service)]
Doctors = Annotated[DoctorRepository, Depends(get_doctor_repository)]
Clinics = Annotated[ClinicRepository, Depends(get_clinic_repository)]
BookingRateLimit = Depends(booking_rate_limit)
