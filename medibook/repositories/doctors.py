"""PostgreSQL doctor repository with Redis read-through cache."""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from medibook.core.exceptions import StorageError
from medibook.core.redis_client import CacheManager
from medibook.domain.doctors import Doctor, DoctorStatus
from medibook.models.doctors import doctors
from medibook.repositories.base import DoctorRepository

logger = get_logger(__name__)


def _to_row(doctor: Doctor) -> dict:
    row = doctor.model_dump(exclude={"created_at", "updated_at"})
    row["status"] = doctor.status.value
    row["consultation_types"] = [t.value for t in doctor.consultation_types]
    row["weekly_availability"] = {
        day: [w.model_dump(mode="json") for w in windows]
        for day, windows in doctor.weekly_availability.items()
    }
    return row


class SQLDoctorRepository(DoctorRepository):
    """Doctor storage on the ``doctors`` table."""

    # Cache TTL in seconds
    DOCTOR_CACHE_TTL = 900  # 15 minutes for individual doctors
    EMERGENCY_LIST_CACHE_TTL = 60

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize repository with a session and optional cache manager."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_doctor_cache_key(doctor_id: UUID) -> str:
        """Generate cache key for doctor."""
        return f"doctor:{doctor_id}"

    @staticmethod
    def _get_emergency_cache_key(city: str | None) -> str:
        """Generate cache key for emergency doctor lists."""
        return f"doctor:emergency:{(city or 'any').lower()}"

    async def _execute(self, operation: str, query):
        try:
            return await self.db.execute(query)
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error("doctor_storage_failed", operation=operation, error=str(e))
            raise StorageError(f"{operation} failed") from e

    async def get(self, doctor_id: UUID) -> Doctor | None:
        """Get doctor by ID with caching."""
        if self.cache:
            cached = self.cache.get_json(self._get_doctor_cache_key(doctor_id))
            if cached:
                return Doctor.model_validate(cached)

        result = await self._execute(
            "get_doctor", select(doctors).where(doctors.c.id == doctor_id)
        )
        row = result.mappings().first()
        if not row:
            return None

        doctor = Doctor.model_validate(dict(row))
        if self.cache:
            self.cache.set_json(
                self._get_doctor_cache_key(doctor_id),
                doctor.model_dump(mode="json"),
                ttl=self.DOCTOR_CACHE_TTL,
            )
        return doctor

    async def find_emergency_available(self, city: str | None = None) -> list[Doctor]:
        """Emergency-available verified doctors, optionally in one city."""
        cache_key = self._get_emergency_cache_key(city)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached is not None:
                return [Doctor.model_validate(d) for d in cached]

        query = select(doctors).where(
            doctors.c.is_emergency_available.is_(True),
            doctors.c.status == DoctorStatus.VERIFIED.value,
            doctors.c.accepting_bookings.is_(True),
        )
        if city:
            query = query.where(func.lower(doctors.c.city) == city.lower())
        query = query.order_by(doctors.c.rating.desc().nulls_last(), doctors.c.created_at)

        result = await self._execute("find_emergency_available", query)
        found = [Doctor.model_validate(dict(row)) for row in result.mappings().all()]

        if self.cache:
            self.cache.set_json(
                cache_key,
                [d.model_dump(mode="json") for d in found],
                ttl=self.EMERGENCY_LIST_CACHE_TTL,
            )
        return found

    async def create(self, doctor: Doctor) -> Doctor:
        """Create a new doctor profile."""
        result = await self._execute(
            "create_doctor", doctors.insert().values(**_to_row(doctor)).returning(doctors)
        )
        row = result.mappings().first()
        await self.db.commit()

        if self.cache:
            self.cache.delete_pattern("doctor:emergency:*")

        logger.info("doctor_created", doctor_id=str(doctor.id))
        return Doctor.model_validate(dict(row))

    async def update_status(self, doctor_id: UUID, status: DoctorStatus) -> Doctor | None:
        """Change a doctor's verification status."""
        result = await self._execute(
            "update_doctor_status",
            doctors.update()
            .where(doctors.c.id == doctor_id)
            .values(status=status.value, updated_at=datetime.now(UTC))
            .returning(doctors),
        )
        row = result.mappings().first()
        if not row:
            return None
        await self.db.commit()

        # Invalidate cache
        if self.cache:
            self.cache.delete(self._get_doctor_cache_key(doctor_id))
            self.cache.delete_pattern("doctor:emergency:*")

        logger.info("doctor_status_updated", doctor_id=str(doctor_id), status=status.value)
        return Doctor.model_validate(dict(row))
