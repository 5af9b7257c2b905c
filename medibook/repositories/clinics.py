"""PostgreSQL clinic repository with Redis read-through cache."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from medibook.core.exceptions import StorageError
from medibook.core.redis_client import CacheManager
from medibook.domain.clinics import Clinic
from medibook.models.clinics import clinics
from medibook.repositories.base import ClinicRepository

logger = get_logger(__name__)


class SQLClinicRepository(ClinicRepository):
    """Clinic storage on the ``clinics`` table."""

    CLINIC_CACHE_TTL = 1800  # 30 minutes

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize repository with a session and optional cache manager."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_clinic_cache_key(clinic_id: UUID) -> str:
        """Generate cache key for clinic."""
        return f"clinic:{clinic_id}"

    async def get(self, clinic_id: UUID) -> Clinic | None:
        """Get clinic by ID with caching."""
        if self.cache:
            cached = self.cache.get_json(self._get_clinic_cache_key(clinic_id))
            if cached:
                return Clinic.model_validate(cached)

        try:
            result = await self.db.execute(select(clinics).where(clinics.c.id == clinic_id))
        except (SQLAlchemyError, OSError) as e:
            logger.error("clinic_storage_failed", operation="get_clinic", error=str(e))
            raise StorageError("get_clinic failed") from e

        row = result.mappings().first()
        if not row:
            return None

        clinic = Clinic.model_validate(dict(row))
        if self.cache:
            self.cache.set_json(
                self._get_clinic_cache_key(clinic_id),
                clinic.model_dump(mode="json"),
                ttl=self.CLINIC_CACHE_TTL,
            )
        return clinic

    async def create(self, clinic: Clinic) -> Clinic:
        """Create a new clinic."""
        values = clinic.model_dump(exclude={"created_at", "updated_at"})
        values["status"] = clinic.status.value
        values["working_hours"] = {
            day: hours.model_dump(mode="json") for day, hours in clinic.working_hours.items()
        }
        try:
            result = await self.db.execute(
                clinics.insert().values(**values).returning(clinics)
            )
            row = result.mappings().first()
            await self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error("clinic_storage_failed", operation="create_clinic", error=str(e))
            raise StorageError("create_clinic failed") from e

        logger.info("clinic_created", clinic_id=str(clinic.id))
        return Clinic.model_validate(dict(row))
