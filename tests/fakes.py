"""In-memory collaborators for booking service tests."""

import asyncio
from datetime import datetime
from uuid import UUID

from medibook.core.exceptions import (
    ConcurrentModificationError,
    SlotConflictError,
    StorageError,
)
from medibook.domain.appointments import Appointment, AppointmentStatus
from medibook.domain.clinics import Clinic
from medibook.domain.doctors import Doctor, DoctorStatus
from medibook.repositories.base import (
    AppointmentRepository,
    ClinicRepository,
    DoctorRepository,
)
from medibook.services.availability import overlaps
from medibook.services.notification_service import NotificationEvent, NotificationService

ACTIVE = {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED}


class InMemoryAppointmentRepository(AppointmentRepository):
    """Dict-backed storage; the lock plays the role of the database transaction."""

    def __init__(self):
        self.rows: dict[UUID, Appointment] = {}
        self._lock = asyncio.Lock()
        self.fail_with: StorageError | None = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _live(self) -> list[Appointment]:
        return [a for a in self.rows.values() if a.deleted_at is None]

    def _conflicts(
        self, doctor_id: UUID, start: datetime, end: datetime, exclude_id: UUID | None
    ) -> list[Appointment]:
        return sorted(
            (
                a
                for a in self._live()
                if a.doctor_id == doctor_id
                and a.status != AppointmentStatus.CANCELLED
                and a.id != exclude_id
                and overlaps(a.start_time, a.end_time, start, end)
            ),
            key=lambda a: a.start_time,
        )

    async def get(self, appointment_id: UUID) -> Appointment | None:
        self._maybe_fail()
        row = self.rows.get(appointment_id)
        if row is None or row.deleted_at is not None:
            return None
        return row.model_copy(deep=True)

    async def get_by_confirmation_code(self, code: str) -> Appointment | None:
        self._maybe_fail()
        for row in self._live():
            if row.confirmation_code == code:
                return row.model_copy(deep=True)
        return None

    async def find_conflicting(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[Appointment]:
        self._maybe_fail()
        conflicts = self._conflicts(doctor_id, start, end, exclude_id)
        # Yield after reading so concurrent bookings race to the insert.
        await asyncio.sleep(0)
        return [a.model_copy(deep=True) for a in conflicts]

    async def insert(self, appointment: Appointment) -> Appointment:
        self._maybe_fail()
        async with self._lock:
            if self._conflicts(
                appointment.doctor_id, appointment.start_time, appointment.end_time, appointment.id
            ):
                raise SlotConflictError(str(appointment.doctor_id))
            self.rows[appointment.id] = appointment.model_copy(deep=True)
        return appointment.model_copy(deep=True)

    async def update(
        self,
        appointment: Appointment,
        expected_version: int,
        check_slot: bool = False,
    ) -> Appointment:
        self._maybe_fail()
        async with self._lock:
            stored = self.rows.get(appointment.id)
            stale = stored is None or stored.deleted_at is not None
            if stale or stored.version != expected_version:
                raise ConcurrentModificationError(str(appointment.id), expected_version)
            if check_slot and self._conflicts(
                appointment.doctor_id, appointment.start_time, appointment.end_time, appointment.id
            ):
                raise SlotConflictError(str(appointment.doctor_id))
            saved = appointment.model_copy(deep=True, update={"version": expected_version + 1})
            self.rows[appointment.id] = saved
        return saved.model_copy(deep=True)

    async def list_for_doctor(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        statuses: set[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        self._maybe_fail()
        return sorted(
            (
                a.model_copy(deep=True)
                for a in self._live()
                if a.doctor_id == doctor_id
                and start <= a.start_time < end
                and (not statuses or a.status in statuses)
            ),
            key=lambda a: a.start_time,
        )

    async def list_for_user(
        self,
        user_id: UUID,
        statuses: set[AppointmentStatus] | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Appointment], int]:
        self._maybe_fail()
        matching = sorted(
            (
                a
                for a in self._live()
                if a.user_id == user_id and (not statuses or a.status in statuses)
            ),
            key=lambda a: a.start_time,
            reverse=True,
        )
        return [a.model_copy(deep=True) for a in matching[skip : skip + limit]], len(matching)

    async def count_active_for_user(self, user_id: UUID, now: datetime) -> int:
        self._maybe_fail()
        return sum(
            1
            for a in self._live()
            if a.user_id == user_id and a.status in ACTIVE and a.start_time > now
        )


class InMemoryDoctorRepository(DoctorRepository):
    def __init__(self, *doctors: Doctor):
        self.doctors = {d.id: d for d in doctors}

    async def get(self, doctor_id: UUID) -> Doctor | None:
        return self.doctors.get(doctor_id)

    async def find_emergency_available(self, city: str | None = None) -> list[Doctor]:
        found = [
            d
            for d in self.doctors.values()
            if d.is_emergency_available
            and d.is_verified
            and (city is None or (d.city or "").lower() == city.lower())
        ]
        return sorted(found, key=lambda d: d.rating or 0, reverse=True)

    async def create(self, doctor: Doctor) -> Doctor:
        self.doctors[doctor.id] = doctor
        return doctor

    async def update_status(self, doctor_id: UUID, status: DoctorStatus) -> Doctor | None:
        doctor = self.doctors.get(doctor_id)
        if doctor is None:
            return None
        doctor = doctor.model_copy(update={"status": status})
        self.doctors[doctor_id] = doctor
        return doctor


class InMemoryClinicRepository(ClinicRepository):
    def __init__(self, *clinics: Clinic):
        self.clinics = {c.id: c for c in clinics}

    async def get(self, clinic_id: UUID) -> Clinic | None:
        return self.clinics.get(clinic_id)

    async def create(self, clinic: Clinic) -> Clinic:
        self.clinics[clinic.id] = clinic
        return clinic


class RecordingNotificationService(NotificationService):
    """Records events instead of pushing them; can be told to blow up."""

    def __init__(self, fail: bool = False):
        super().__init__(enabled=True)
        self.sent: list[tuple[NotificationEvent, UUID, UUID]] = []
        self.fail = fail

    async def notify(
        self, event: NotificationEvent, appointment_id: UUID, recipient_id: UUID
    ) -> bool:
        if self.fail:
            raise RuntimeError("push backend down")
        self.sent.append((event, appointment_id, recipient_id))
        return True

    @property
    def events(self) -> list[NotificationEvent]:
        return [event for event, _, _ in self.sent]
