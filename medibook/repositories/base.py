"""Storage interfaces used by the booking engine.

One narrow interface per aggregate, exposing only the query shapes booking
needs. PostgreSQL implementations live next to this module; tests substitute
in-memory fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from medibook.domain.appointments import Appointment, AppointmentStatus
from medibook.domain.clinics import Clinic
from medibook.domain.doctors import Doctor, DoctorStatus


class AppointmentRepository(ABC):
    """Persistence for appointments. Soft-deleted rows are never returned."""

    @abstractmethod
    async def get(self, appointment_id: UUID) -> Appointment | None:
        """Load an appointment by id."""

    @abstractmethod
    async def get_by_confirmation_code(self, code: str) -> Appointment | None:
        """Load an appointment by its confirmation code."""

    @abstractmethod
    async def find_conflicting(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> list[Appointment]:
        """Non-cancelled appointments of the doctor overlapping ``[start, end)``."""

    @abstractmethod
    async def insert(self, appointment: Appointment) -> Appointment:
        """
        Persist a new appointment.

        The conflict check and the insert run as one atomic unit.

        Raises:
            SlotConflictError: If the slot overlaps an existing booking
            StorageError: If storage fails
        """

    @abstractmethod
    async def update(
        self,
        appointment: Appointment,
        expected_version: int,
        check_slot: bool = False,
    ) -> Appointment:
        """
        Persist changes made through entity transitions.

        Args:
            appointment: Entity after the transition
            expected_version: Version the caller loaded
            check_slot: Re-run the conflict check atomically, for time changes

        Returns:
            The appointment with its version bumped

        Raises:
            ConcurrentModificationError: If the stored version moved on
            SlotConflictError: If check_slot is set and the new slot is taken
            StorageError: If storage fails
        """

    @abstractmethod
    async def list_for_doctor(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        statuses: set[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        """Appointments of a doctor starting in ``[start, end)``, ordered by start."""

    @abstractmethod
    async def list_for_user(
        self,
        user_id: UUID,
        statuses: set[AppointmentStatus] | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Appointment], int]:
        """A page of a user's appointments, most recent first, and the total count."""

    @abstractmethod
    async def count_active_for_user(self, user_id: UUID, now: datetime) -> int:
        """Upcoming PENDING, CONFIRMED or RESCHEDULED appointments held by a user."""


class DoctorRepository(ABC):
    """Persistence for doctors."""

    @abstractmethod
    async def get(self, doctor_id: UUID) -> Doctor | None:
        """Load a doctor by id."""

    @abstractmethod
    async def find_emergency_available(self, city: str | None = None) -> list[Doctor]:
        """Verified, emergency-available doctors, best rated first."""

    @abstractmethod
    async def create(self, doctor: Doctor) -> Doctor:
        """Persist a new doctor."""

    @abstractmethod
    async def update_status(self, doctor_id: UUID, status: DoctorStatus) -> Doctor | None:
        """Change verification status. Returns None if the doctor does not exist."""


class ClinicRepository(ABC):
    """Persistence for clinics."""

    @abstractmethod
    async def get(self, clinic_id: UUID) -> Clinic | None:
        """Load a clinic by id."""

    @abstractmethod
    async def create(self, clinic: Clinic) -> Clinic:
        """Persist a new clinic."""
