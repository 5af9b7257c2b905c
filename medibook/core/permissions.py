"""Authorization checks for appointment access."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from medibook.domain.appointments import Appointment


class UserRole(str, Enum):
    """User role enumeration."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, resolved once per request from the access token."""

    user_id: UUID
    role: UserRole = UserRole.PATIENT
    # Set for doctors: the doctor profile the user acts as.
    doctor_id: UUID | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR and self.doctor_id is not None


def is_treating_doctor(actor: Actor, appointment: Appointment) -> bool:
    return actor.is_doctor and actor.doctor_id == appointment.doctor_id


def can_access_appointment(actor: Actor, appointment: Appointment) -> bool:
    """Patients see their own appointments, doctors those booked with them, admins all."""
    if actor.is_admin:
        return True
    if actor.user_id == appointment.user_id:
        return True
    return is_treating_doctor(actor, appointment)


def can_manage_appointment(actor: Actor, appointment: Appointment) -> bool:
    """Confirm, start, complete and no-show are reserved for the doctor and admins."""
    return actor.is_admin or is_treating_doctor(actor, appointment)


def can_view_doctor_schedule(actor: Actor, doctor_id: UUID) -> bool:
    return actor.is_admin or (actor.is_doctor and actor.doctor_id == doctor_id)
