"""Appointment entity and its lifecycle state machine."""

import secrets
import string
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from medibook.config import settings
from medibook.core.exceptions import InvalidStateTransition


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class AppointmentType(str, Enum):
    """Consultation type enumeration."""

    ONLINE = "online"
    OFFLINE = "offline"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class CancellationReason(str, Enum):
    """Cancellation reason enumeration."""

    PATIENT_REQUEST = "patient_request"
    DOCTOR_UNAVAILABLE = "doctor_unavailable"
    EMERGENCY = "emergency"
    TECHNICAL_ISSUE = "technical_issue"
    WEATHER = "weather"
    OTHER = "other"


# RESCHEDULED behaves like a confirmed booking whose times changed.
CONFIRMED_STATES = frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED})
TERMINAL_STATES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
# Statuses that occupy a place in the doctor's queue for the day.
QUEUED_STATES = frozenset(
    {
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.IN_PROGRESS,
    }
)

CONFIRMATION_CODE_PREFIX = "APT"
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_confirmation_code(length: int = 8) -> str:
    """Generate a short, human-shareable booking code such as ``APT7K2QX9MD``."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
    return f"{CONFIRMATION_CODE_PREFIX}{suffix}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class PaymentInfo(BaseModel):
    """Payment details embedded in an appointment."""

    payment_id: str | None = None
    order_id: str | None = None
    amount: Decimal = Decimal("0.00")
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.PENDING
    method: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None


class CancellationInfo(BaseModel):
    """Cancellation details, present only on cancelled appointments."""

    reason: CancellationReason
    description: str | None = None
    cancelled_at: datetime
    cancelled_by: UUID
    refund_amount: Decimal = Decimal("0.00")
    refund_id: str | None = None
    refund_processed: bool = False
    refunded_at: datetime | None = None


class ConsultationInfo(BaseModel):
    """Video consultation details for online appointments."""

    meeting_id: str | None = None
    link: str | None = None
    call_started_at: datetime | None = None
    call_ended_at: datetime | None = None
    duration_minutes: int | None = None


class Appointment(BaseModel):
    """
    A booked consultation slot.

    Status, payment, cancellation and consultation state change only through
    the transition methods below. Every transition checks its guard before
    touching any field, so a rejected transition leaves the entity unchanged.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    doctor_id: UUID
    clinic_id: UUID | None = None
    parent_appointment_id: UUID | None = None

    appointment_date: date | None = None
    start_time: datetime
    end_time: datetime
    type: AppointmentType
    status: AppointmentStatus = AppointmentStatus.PENDING

    symptoms: str | None = None
    notes: str | None = None
    is_emergency: bool = False

    consultation_fee: Decimal = Decimal("0.00")
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    cancellation_info: CancellationInfo | None = None
    consultation_info: ConsultationInfo | None = None

    confirmation_code: str = Field(default_factory=generate_confirmation_code)
    booked_at: datetime = Field(default_factory=_utcnow)
    confirmed_at: datetime | None = None

    prescription_id: UUID | None = None
    follow_up_date: datetime | None = None
    follow_up_notes: str | None = None

    version: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deleted_at: datetime | None = None

    @field_validator("start_time", "end_time", "booked_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Store every instant in UTC."""
        return _as_utc(v)

    @model_validator(mode="after")
    def validate_slot(self) -> "Appointment":
        """Enforce start < end and the minimum slot length."""
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if self.end_time - self.start_time < timedelta(minutes=settings.min_slot_duration_minutes):
            raise ValueError(
                f"Slot must last at least {settings.min_slot_duration_minutes} minutes"
            )
        if self.appointment_date is None:
            self.appointment_date = self.start_time.date()
        return self

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def duration_minutes(self) -> int:
        return int(self.duration.total_seconds() // 60)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def can_be_cancelled(self, now: datetime | None = None) -> bool:
        """True while the appointment is not terminal and has not started yet."""
        now = now or _utcnow()
        return self.status not in TERMINAL_STATES and self.start_time > now

    def can_be_rescheduled(self, now: datetime | None = None) -> bool:
        """True when not terminal/in progress and enough notice remains before start."""
        now = now or _utcnow()
        if self.status in TERMINAL_STATES or self.status == AppointmentStatus.IN_PROGRESS:
            return False
        notice = timedelta(minutes=settings.reschedule_notice_minutes)
        return self.start_time - now >= notice

    def requires_refund(self) -> bool:
        """True for a cancelled, paid appointment whose refund has not been processed."""
        return (
            self.status == AppointmentStatus.CANCELLED
            and self.payment_info.status == PaymentStatus.PAID
            and self.cancellation_info is not None
            and not self.cancellation_info.refund_processed
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _reject(self, operation: str, allowed: frozenset | set) -> None:
        raise InvalidStateTransition(
            current_status=self.status.value,
            operation=operation,
            allowed_from=sorted(s.value for s in allowed),
        )

    def _touch(self, now: datetime) -> None:
        self.updated_at = now

    def confirm(self, now: datetime | None = None) -> None:
        """PENDING -> CONFIRMED."""
        allowed = {AppointmentStatus.PENDING}
        if self.status not in allowed:
            self._reject("confirm", allowed)
        now = now or _utcnow()
        self.status = AppointmentStatus.CONFIRMED
        self.confirmed_at = now
        self._touch(now)

    def start_consultation(self, now: datetime | None = None) -> None:
        """CONFIRMED -> IN_PROGRESS."""
        if self.status not in CONFIRMED_STATES:
            self._reject("start_consultation", CONFIRMED_STATES)
        now = now or _utcnow()
        info = self.consultation_info or ConsultationInfo()
        self.consultation_info = info.model_copy(update={"call_started_at": now})
        self.status = AppointmentStatus.IN_PROGRESS
        self._touch(now)

    def complete(self, now: datetime | None = None) -> None:
        """IN_PROGRESS -> COMPLETED, or CONFIRMED -> COMPLETED for offline visits."""
        allowed = {AppointmentStatus.IN_PROGRESS}
        if self.type == AppointmentType.OFFLINE:
            allowed |= CONFIRMED_STATES
        if self.status not in allowed:
            self._reject("complete", allowed)
        now = now or _utcnow()
        if self.type == AppointmentType.ONLINE and self.consultation_info is not None:
            started = self.consultation_info.call_started_at
            duration = int((now - started).total_seconds() // 60) if started else None
            self.consultation_info = self.consultation_info.model_copy(
                update={"call_ended_at": now, "duration_minutes": duration}
            )
        self.status = AppointmentStatus.COMPLETED
        self._touch(now)

    def cancel(
        self,
        reason: CancellationReason,
        description: str | None,
        cancelled_by: UUID,
        now: datetime | None = None,
        refund_amount: Decimal | None = None,
    ) -> None:
        """Cancel a not-yet-started, non-terminal appointment."""
        now = now or _utcnow()
        if not self.can_be_cancelled(now):
            self._reject("cancel", {AppointmentStatus.PENDING, *CONFIRMED_STATES})
        if refund_amount is None:
            refund_amount = (
                self.payment_info.amount
                if self.payment_info.status == PaymentStatus.PAID
                else Decimal("0.00")
            )
        self.cancellation_info = CancellationInfo(
            reason=reason,
            description=description,
            cancelled_at=now,
            cancelled_by=cancelled_by,
            refund_amount=refund_amount,
        )
        self.status = AppointmentStatus.CANCELLED
        self._touch(now)

    def mark_no_show(self, now: datetime | None = None) -> None:
        """PENDING/CONFIRMED -> NO_SHOW once the start time has passed."""
        allowed = {AppointmentStatus.PENDING, *CONFIRMED_STATES}
        now = now or _utcnow()
        if self.status not in allowed or now < self.start_time:
            self._reject("mark_no_show", allowed)
        self.status = AppointmentStatus.NO_SHOW
        self._touch(now)

    def reschedule(self, new_start_time: datetime, now: datetime | None = None) -> None:
        """
        Move the appointment, keeping its original duration.

        A confirmed appointment becomes RESCHEDULED. A PENDING one stays
        PENDING and still needs the doctor's confirmation.
        """
        now = now or _utcnow()
        if not self.can_be_rescheduled(now):
            self._reject("reschedule", {AppointmentStatus.PENDING, *CONFIRMED_STATES})
        new_start_time = _as_utc(new_start_time)
        duration = self.duration
        self.start_time = new_start_time
        self.end_time = new_start_time + duration
        self.appointment_date = new_start_time.date()
        if self.status in CONFIRMED_STATES:
            self.status = AppointmentStatus.RESCHEDULED
        self._touch(now)

    def process_refund(
        self, amount: Decimal, refund_id: str, now: datetime | None = None
    ) -> None:
        """Record a processed refund. A second call fails once the refund is recorded."""
        if not self.requires_refund():
            self._reject("process_refund", {AppointmentStatus.CANCELLED})
        now = now or _utcnow()
        self.cancellation_info = self.cancellation_info.model_copy(
            update={
                "refund_amount": amount,
                "refund_id": refund_id,
                "refund_processed": True,
                "refunded_at": now,
            }
        )
        status = (
            PaymentStatus.REFUNDED
            if amount >= self.payment_info.amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        self.payment_info = self.payment_info.model_copy(update={"status": status})
        self._touch(now)

    # ------------------------------------------------------------------
    # Payment and consultation bookkeeping
    # ------------------------------------------------------------------

    def attach_payment_order(self, order_id: str, now: datetime | None = None) -> None:
        self.payment_info = self.payment_info.model_copy(update={"order_id": order_id})
        self._touch(now or _utcnow())

    def record_payment(
        self, payment_id: str, method: str | None = None, now: datetime | None = None
    ) -> None:
        """Mark the consultation fee as paid."""
        payable = {PaymentStatus.PENDING, PaymentStatus.FAILED}
        if self.status in TERMINAL_STATES or self.payment_info.status not in payable:
            self._reject("record_payment", {AppointmentStatus.PENDING, *CONFIRMED_STATES})
        now = now or _utcnow()
        self.payment_info = self.payment_info.model_copy(
            update={
                "payment_id": payment_id,
                "method": method,
                "status": PaymentStatus.PAID,
                "paid_at": now,
                "failure_reason": None,
            }
        )
        self._touch(now)

    def mark_payment_failed(self, reason: str, now: datetime | None = None) -> None:
        if self.payment_info.status != PaymentStatus.PENDING:
            self._reject("mark_payment_failed", {AppointmentStatus.PENDING})
        self.payment_info = self.payment_info.model_copy(
            update={"status": PaymentStatus.FAILED, "failure_reason": reason}
        )
        self._touch(now or _utcnow())

    def attach_video_call(self, base_url: str, now: datetime | None = None) -> None:
        """Generate the meeting room for an online consultation."""
        if self.type != AppointmentType.ONLINE:
            return
        meeting_id = secrets.token_urlsafe(8)
        info = self.consultation_info or ConsultationInfo()
        self.consultation_info = info.model_copy(
            update={"meeting_id": meeting_id, "link": f"{base_url.rstrip('/')}/{meeting_id}"}
        )
        self._touch(now or _utcnow())

    def schedule_follow_up(
        self, follow_up_date: datetime, notes: str | None = None, now: datetime | None = None
    ) -> None:
        """Record the follow-up date on a completed appointment."""
        allowed = {AppointmentStatus.COMPLETED}
        if self.status not in allowed:
            self._reject("schedule_follow_up", allowed)
        self.follow_up_date = _as_utc(follow_up_date)
        if notes:
            self.follow_up_notes = notes
        self._touch(now or _utcnow())

    def soft_delete(self, now: datetime | None = None) -> None:
        now = now or _utcnow()
        self.deleted_at = now
        self._touch(now)
