"""PostgreSQL appointment repository."""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from medibook.core.exceptions import (
    ConcurrentModificationError,
    SlotConflictError,
    StorageError,
)
from medibook.domain.appointments import Appointment, AppointmentStatus
from medibook.models.appointments import NO_OVERLAP_CONSTRAINT, appointments
from medibook.models.doctors import doctors
from medibook.repositories.base import AppointmentRepository

logger = get_logger(__name__)

ACTIVE_STATUSES = (
    AppointmentStatus.PENDING.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.RESCHEDULED.value,
)


def _to_row(appointment: Appointment) -> dict[str, Any]:
    """Flatten an entity into column values."""
    row = appointment.model_dump(
        exclude={"payment_info", "cancellation_info", "consultation_info"},
    )
    row["type"] = appointment.type.value
    row["status"] = appointment.status.value
    row["payment_info"] = appointment.payment_info.model_dump(mode="json")
    row["cancellation_info"] = (
        appointment.cancellation_info.model_dump(mode="json")
        if appointment.cancellation_info
        else None
    )
    row["consultation_info"] = (
        appointment.consultation_info.model_dump(mode="json")
        if appointment.consultation_info
        else None
    )
    return row


def _from_row(row: Any) -> Appointment:
    return Appointment.model_validate(dict(row))


class SQLAppointmentRepository(AppointmentRepository):
    """Appointment storage on the ``appointments`` table."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with a database session."""
        self.db = db

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """
        Run a write as one transaction.

        Commits on success and rolls back on any failure. Driver errors are
        translated to storage errors; a violated no-overlap constraint means a
        concurrent booking won the slot.
        """
        started = time.perf_counter()
        try:
            yield
            await self.db.commit()
        except (SlotConflictError, ConcurrentModificationError):
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            if NO_OVERLAP_CONSTRAINT in str(e.orig):
                raise SlotConflictError(str(context.get("doctor_id"))) from e
            logger.error(
                "appointment_storage_integrity_error",
                operation=operation,
                error=str(e.orig),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                **context,
            )
            raise StorageError(f"{operation} failed") from e
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(
                "appointment_storage_failed",
                operation=operation,
                error=str(e),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                **context,
            )
            raise StorageError(f"{operation} failed") from e

    async def _lock_doctor(self, doctor_id: UUID) -> None:
        # Serializes writers for the same doctor; the exclusion constraint
        # remains the final guard.
        await self.db.execute(
            select(doctors.c.id).where(doctors.c.id == doctor_id).with_for_update()
        )

    async def _read(self, operation: str, query: Any) -> Any:
        try:
            return await self.db.execute(query)
        except (SQLAlchemyError, OSError) as e:
            logger.error("appointment_storage_failed", operation=operation, error=str(e))
            raise StorageError(f"{operation} failed") from e

    async def get(self, appointment_id: UUID) -> Appointment | None:
        query = select(appointments).where(
            appointments.c.id == appointment_id,
            appointments.c.deleted_at.is_(None),
        )
        result = await self._read("get_appointment", query)
        row = result.mappings().first()
        return _from_row(row) if row else None

    async def get_by_confirmation_code(self, code: str) -> Appointment | None:
        query = select(appointments).where(
            appointments.c.confirmation_code == code,
            appointments.c.deleted_at.is_(None),
        )
        result = await self._read("get_appointment_by_code", query)
        row = result.mappings().first()
        return _from_row(row) if row else None

    def _conflict_query(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None,
    ) -> Any:
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
            appointments.c.deleted_at.is_(None),
            # Half-open overlap: existing.start < end AND existing.end > start
            appointments.c.start_time < end,
            appointments.c.end_time > start,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)
        return select(appointments).where(and_(*conditions)).order_by(appointments.c.start_time)

    async def find_conflicting(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[Appointment]:
        result = await self._read(
            "find_conflicting", self._conflict_query(doctor_id, start, end, exclude_id)
        )
        return [_from_row(row) for row in result.mappings().all()]

    async def _ensure_slot_free(self, appointment: Appointment) -> None:
        await self._lock_doctor(appointment.doctor_id)
        result = await self.db.execute(
            self._conflict_query(
                appointment.doctor_id,
                appointment.start_time,
                appointment.end_time,
                appointment.id,
            ).limit(1)
        )
        if result.first() is not None:
            raise SlotConflictError(str(appointment.doctor_id))

    async def insert(self, appointment: Appointment) -> Appointment:
        async with self._unit_of_work(
            "insert_appointment",
            appointment_id=str(appointment.id),
            doctor_id=str(appointment.doctor_id),
        ):
            await self._ensure_slot_free(appointment)
            result = await self.db.execute(
                appointments.insert().values(**_to_row(appointment)).returning(appointments)
            )
            row = result.mappings().first()
        return _from_row(row)

    async def update(
        self,
        appointment: Appointment,
        expected_version: int,
        check_slot: bool = False,
    ) -> Appointment:
        values = _to_row(appointment)
        values.pop("id")
        values["version"] = expected_version + 1
        async with self._unit_of_work(
            "update_appointment",
            appointment_id=str(appointment.id),
            doctor_id=str(appointment.doctor_id),
            expected_version=expected_version,
        ):
            if check_slot:
                await self._ensure_slot_free(appointment)
            result = await self.db.execute(
                appointments.update()
                .where(
                    appointments.c.id == appointment.id,
                    appointments.c.version == expected_version,
                    appointments.c.deleted_at.is_(None),
                )
                .values(**values)
                .returning(appointments)
            )
            row = result.mappings().first()
            if row is None:
                raise ConcurrentModificationError(str(appointment.id), expected_version)
        return _from_row(row)

    async def list_for_doctor(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        statuses: set[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        query = select(appointments).where(
            appointments.c.doctor_id == doctor_id,
            appointments.c.deleted_at.is_(None),
            appointments.c.start_time >= start,
            appointments.c.start_time < end,
        )
        if statuses:
            query = query.where(appointments.c.status.in_([s.value for s in statuses]))
        query = query.order_by(appointments.c.start_time)
        result = await self._read("list_for_doctor", query)
        return [_from_row(row) for row in result.mappings().all()]

    async def list_for_user(
        self,
        user_id: UUID,
        statuses: set[AppointmentStatus] | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Appointment], int]:
        conditions = [
            appointments.c.user_id == user_id,
            appointments.c.deleted_at.is_(None),
        ]
        if statuses:
            conditions.append(appointments.c.status.in_([s.value for s in statuses]))

        count_query = select(func.count()).select_from(appointments).where(*conditions)
        total = (await self._read("count_for_user", count_query)).scalar() or 0

        query = (
            select(appointments)
            .where(*conditions)
            .order_by(appointments.c.start_time.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self._read("list_for_user", query)
        return [_from_row(row) for row in result.mappings().all()], total

    async def count_active_for_user(self, user_id: UUID, now: datetime) -> int:
        query = (
            select(func.count())
            .select_from(appointments)
            .where(
                appointments.c.user_id == user_id,
                appointments.c.deleted_at.is_(None),
                appointments.c.status.in_(ACTIVE_STATUSES),
                appointments.c.start_time > now,
            )
        )
        result = await self._read("count_active_for_user", query)
        return result.scalar() or 0
