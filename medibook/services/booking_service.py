"""Booking service: appointment workflows and availability."""

import functools
import itertools
import time
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog

from medibook.config import Settings
from medibook.core.exceptions import (
    ConcurrentModificationError,
    InvalidStateTransition,
    PaymentGatewayError,
    SlotConflictError,
    StorageError,
)
from medibook.core.permissions import (
    Actor,
    can_access_appointment,
    can_manage_appointment,
)
from medibook.domain.appointments import (
    QUEUED_STATES,
    Appointment,
    AppointmentStatus,
    AppointmentType,
    PaymentInfo,
    PaymentStatus,
)
from medibook.domain.clinics import Clinic
from medibook.domain.doctors import Doctor
from medibook.repositories.base import (
    AppointmentRepository,
    ClinicRepository,
    DoctorRepository,
)
from medibook.schemas.appointments import (
    BookingRequest,
    CancellationRequest,
    EmergencyBookingRequest,
    FollowUpRequest,
    PaymentVerificationRequest,
    RescheduleRequest,
)
from medibook.services.availability import (
    clinic_open_for,
    doctor_available_for,
    generate_slots,
)
from medibook.services.booking_types import (
    AppointmentListResult,
    AvailabilityResult,
    BookingError,
    BookingResult,
    QueueResult,
)
from medibook.services.notification_service import NotificationEvent, NotificationService
from medibook.services.payment_service import PaymentService

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

MAX_AVAILABILITY_RANGE_DAYS = 31
STORAGE_FAILURE_MESSAGE = "Service temporarily unavailable, please try again later"
NON_CANCELLED_STATES = set(AppointmentStatus) - {AppointmentStatus.CANCELLED}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def storage_guarded(operation: str, result_type: type = BookingResult):
    """
    Turn storage failures into a DATABASE_ERROR result.

    Logs at error level with the operation, the ids it was called with and
    how long it ran. Internal detail never reaches the caller.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            started = time.perf_counter()
            try:
                return await func(self, *args, **kwargs)
            except StorageError as e:
                ids = [str(a) for a in (*args, *kwargs.values()) if isinstance(a, UUID)]
                logger.error(
                    "booking_storage_failed",
                    operation=operation,
                    ids=ids,
                    error=str(e),
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                )
                return result_type(BookingError.DATABASE_ERROR, STORAGE_FAILURE_MESSAGE)

        return wrapper

    return decorator


class BookingService:
    """Orchestrates booking, rescheduling, cancellation and the appointment lifecycle."""

    def __init__(
        self,
        appointments: AppointmentRepository,
        doctors: DoctorRepository,
        clinics: ClinicRepository,
        notifications: NotificationService,
        settings: Settings,
        payments: PaymentService | None = None,
        clock: Clock | None = None,
    ):
        """
        Initialize the service with its collaborators.

        Args:
            appointments: Appointment storage
            doctors: Doctor storage
            clinics: Clinic storage
            notifications: Push delivery, fire-and-forget
            settings: Booking rules
            payments: Payment gateway; None disables order creation and refunds
            clock: Source of "now", injectable for tests
        """
        self.appointments = appointments
        self.doctors = doctors
        self.clinics = clinics
        self.notifications = notifications
        self.settings = settings
        self.payments = payments
        self.clock = clock or _utcnow
        self.tz = ZoneInfo(settings.schedule_timezone)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self.clock()

    @staticmethod
    def _reject(
        operation: str,
        error: BookingError,
        message: str,
        appointment: Appointment | None = None,
        **context,
    ) -> BookingResult:
        logger.info("booking_rejected", operation=operation, error=error.value, **context)
        return BookingResult.fail(error, message, appointment)

    async def _notify(
        self, event: NotificationEvent, appointment: Appointment, recipient_id: UUID | None = None
    ) -> None:
        """Notification failures never affect the booking outcome."""
        try:
            await self.notifications.notify(
                event, appointment.id, recipient_id or appointment.user_id
            )
        except Exception as e:
            logger.warning(
                "failed_to_send_appointment_notification",
                notification_event=event.value,
                appointment_id=str(appointment.id),
                error=str(e),
            )

    async def _load(
        self,
        operation: str,
        actor: Actor,
        appointment_id: UUID,
        manage: bool = False,
    ) -> tuple[Appointment | None, BookingResult | None]:
        """Load an appointment and check the actor may act on it."""
        appointment = await self.appointments.get(appointment_id)
        if appointment is None:
            return None, self._reject(
                operation,
                BookingError.APPOINTMENT_NOT_FOUND,
                "Appointment not found",
                appointment_id=str(appointment_id),
            )
        allowed = (
            can_manage_appointment(actor, appointment)
            if manage
            else can_access_appointment(actor, appointment)
        )
        if not allowed:
            return None, self._reject(
                operation,
                BookingError.UNAUTHORIZED_ACCESS,
                "Not allowed to access this appointment",
                appointment_id=str(appointment_id),
                actor_id=str(actor.user_id),
            )
        return appointment, None

    def _check_booking_window(self, operation: str, start: datetime) -> BookingResult | None:
        now = self._now()
        if start <= now:
            return self._reject(
                operation, BookingError.INVALID_TIME_SLOT, "Start time must be in the future"
            )
        earliest = now + timedelta(minutes=self.settings.min_booking_lead_minutes)
        latest = now + timedelta(days=self.settings.max_advance_booking_days)
        if start < earliest:
            return self._reject(
                operation,
                BookingError.INVALID_TIME_SLOT,
                f"Appointments must be booked at least "
                f"{self.settings.min_booking_lead_minutes} minutes in advance",
            )
        if start > latest:
            return self._reject(
                operation,
                BookingError.INVALID_TIME_SLOT,
                f"Appointments can be booked at most "
                f"{self.settings.max_advance_booking_days} days in advance",
            )
        return None

    def _check_doctor(
        self, operation: str, doctor: Doctor | None, appointment_type: AppointmentType
    ) -> BookingResult | None:
        if doctor is None:
            return self._reject(operation, BookingError.DOCTOR_NOT_FOUND, "Doctor not found")
        if not doctor.is_verified:
            return self._reject(
                operation,
                BookingError.DOCTOR_NOT_VERIFIED,
                "Doctor is not verified",
                doctor_id=str(doctor.id),
            )
        if not doctor.accepts_bookings() or not doctor.supports(appointment_type):
            return self._reject(
                operation,
                BookingError.DOCTOR_NOT_AVAILABLE,
                f"Doctor is not available for {appointment_type.value} consultations",
                doctor_id=str(doctor.id),
            )
        return None

    async def _resolve_clinic(
        self, operation: str, clinic_id: UUID | None, appointment_type: AppointmentType
    ) -> tuple[Clinic | None, BookingResult | None]:
        """Only offline visits take place at a clinic."""
        if clinic_id is None or appointment_type != AppointmentType.OFFLINE:
            return None, None
        clinic = await self.clinics.get(clinic_id)
        if clinic is None:
            return None, self._reject(
                operation,
                BookingError.CLINIC_NOT_FOUND,
                "Clinic not found",
                clinic_id=str(clinic_id),
            )
        return clinic, None

    def _check_slot_rules(
        self,
        operation: str,
        doctor: Doctor,
        clinic: Clinic | None,
        appointment_type: AppointmentType,
        start: datetime,
        end: datetime,
        check_pattern: bool = True,
    ) -> BookingResult | None:
        """Weekly pattern and clinic hours for a concrete slot."""
        if check_pattern and not doctor_available_for(doctor, start, end, self.tz):
            return self._reject(
                operation,
                BookingError.DOCTOR_NOT_AVAILABLE,
                "Doctor does not consult at the requested time",
                doctor_id=str(doctor.id),
            )
        if clinic is not None and appointment_type == AppointmentType.OFFLINE:
            if not clinic.is_active or not clinic_open_for(clinic, start, end, self.tz):
                return self._reject(
                    operation,
                    BookingError.CLINIC_CLOSED,
                    "Clinic is closed at the requested time",
                    clinic_id=str(clinic.id),
                )
        return None

    async def _check_user_limit(self, operation: str, user_id: UUID) -> BookingResult | None:
        active = await self.appointments.count_active_for_user(user_id, self._now())
        if active >= self.settings.max_active_appointments_per_user:
            return self._reject(
                operation,
                BookingError.BOOKING_LIMIT_EXCEEDED,
                f"You already have {active} upcoming appointments",
                user_id=str(user_id),
            )
        return None

    def _refund_amount(self, appointment: Appointment, actor: Actor, now: datetime) -> Decimal:
        """Full refund with enough notice or when the doctor side cancels, else a fraction."""
        payment = appointment.payment_info
        if payment.status != PaymentStatus.PAID:
            return Decimal("0.00")
        notice = appointment.start_time - now
        if can_manage_appointment(actor, appointment) or notice >= timedelta(
            hours=self.settings.full_refund_notice_hours
        ):
            return payment.amount
        ratio = Decimal(str(self.settings.late_cancellation_refund_ratio))
        return (payment.amount * ratio).quantize(Decimal("0.01"))

    async def _attach_payment_order(self, appointment: Appointment) -> BookingResult:
        """Create the gateway order for a freshly booked appointment."""
        try:
            order_id, payment_url = await self.payments.create_order(
                appointment.consultation_fee,
                appointment.payment_info.currency,
                appointment.id,
            )
        except PaymentGatewayError as e:
            logger.error(
                "payment_order_failed",
                appointment_id=str(appointment.id),
                error=e.message,
            )
            return BookingResult.fail(
                BookingError.PAYMENT_FAILED,
                "Appointment booked but payment could not be initiated, please retry payment",
                appointment,
            )

        expected = appointment.version
        appointment.attach_payment_order(order_id, self._now())
        try:
            appointment = await self.appointments.update(appointment, expected)
        except StorageError as e:
            logger.error(
                "payment_order_not_saved",
                appointment_id=str(appointment.id),
                order_id=order_id,
                error=str(e),
            )
            return BookingResult.fail(
                BookingError.PAYMENT_FAILED,
                "Appointment booked but payment could not be initiated, please retry payment",
                appointment,
            )
        return BookingResult.ok(appointment, "Appointment booked", payment_url)

    async def _place_booking(
        self,
        operation: str,
        user_id: UUID,
        doctor: Doctor,
        clinic: Clinic | None,
        appointment_type: AppointmentType,
        start: datetime,
        symptoms: str | None,
        notes: str | None,
        is_emergency: bool = False,
        parent: Appointment | None = None,
        event: NotificationEvent = NotificationEvent.APPOINTMENT_BOOKED,
    ) -> BookingResult:
        """Slot rules, conflict check, atomic insert, payment order, notification."""
        end = start + timedelta(minutes=doctor.consultation_duration_minutes)
        if end - start < timedelta(minutes=self.settings.min_slot_duration_minutes):
            return self._reject(
                operation, BookingError.INVALID_TIME_SLOT, "Consultation slot is too short"
            )

        rejected = self._check_slot_rules(
            operation, doctor, clinic, appointment_type, start, end, check_pattern=not is_emergency
        )
        if rejected:
            return rejected

        conflicts = await self.appointments.find_conflicting(doctor.id, start, end)
        if conflicts:
            return self._reject(
                operation,
                BookingError.TIME_SLOT_OCCUPIED,
                "The requested time slot is already booked",
                doctor_id=str(doctor.id),
                start_time=start.isoformat(),
            )

        now = self._now()
        multiplier = self.settings.emergency_fee_multiplier if is_emergency else None
        fee = doctor.fee_for(appointment_type, multiplier)
        appointment = Appointment(
            user_id=user_id,
            doctor_id=doctor.id,
            clinic_id=clinic.id if clinic else None,
            parent_appointment_id=parent.id if parent else None,
            start_time=start,
            end_time=end,
            type=appointment_type,
            symptoms=symptoms,
            notes=notes,
            is_emergency=is_emergency,
            consultation_fee=fee,
            payment_info=PaymentInfo(amount=fee, currency=self.settings.payment_currency),
            booked_at=now,
            created_at=now,
            updated_at=now,
        )

        try:
            appointment = await self.appointments.insert(appointment)
        except SlotConflictError:
            # Lost the race to a concurrent booking after the pre-check.
            return self._reject(
                operation,
                BookingError.TIME_SLOT_OCCUPIED,
                "The requested time slot is already booked",
                doctor_id=str(doctor.id),
                start_time=start.isoformat(),
            )

        logger.info(
            "appointment_booked",
            operation=operation,
            appointment_id=str(appointment.id),
            doctor_id=str(doctor.id),
            start_time=start.isoformat(),
            is_emergency=is_emergency,
        )

        result = BookingResult.ok(appointment, "Appointment booked")
        if self.payments is not None and self.settings.payments_enabled and fee > 0:
            result = await self._attach_payment_order(appointment)

        await self._notify(event, result.appointment)
        return result

    async def _save(
        self,
        operation: str,
        appointment: Appointment,
        expected_version: int,
        check_slot: bool = False,
    ) -> tuple[Appointment | None, BookingResult | None]:
        try:
            saved = await self.appointments.update(appointment, expected_version, check_slot)
        except SlotConflictError:
            return None, self._reject(
                operation,
                BookingError.TIME_SLOT_OCCUPIED,
                "The requested time slot is already booked",
                appointment_id=str(appointment.id),
            )
        except ConcurrentModificationError:
            return None, self._reject(
                operation,
                BookingError.BOOKING_CONFLICT,
                "Appointment was modified by another request, please retry",
                appointment_id=str(appointment.id),
            )
        return saved, None

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @storage_guarded("book_appointment")
    async def book_appointment(self, user_id: UUID, request: BookingRequest) -> BookingResult:
        """
        Book an appointment with a specific doctor.

        Args:
            user_id: Patient booking the appointment
            request: Doctor, optional clinic, preferred start and consultation type

        Returns:
            BookingResult with the PENDING appointment on success
        """
        operation = "book_appointment"
        start = request.preferred_start_time

        rejected = self._check_booking_window(operation, start)
        if rejected:
            return rejected

        doctor = await self.doctors.get(request.doctor_id)
        rejected = self._check_doctor(operation, doctor, request.type)
        if rejected:
            return rejected

        clinic, rejected = await self._resolve_clinic(operation, request.clinic_id, request.type)
        if rejected:
            return rejected

        rejected = await self._check_user_limit(operation, user_id)
        if rejected:
            return rejected

        return await self._place_booking(
            operation,
            user_id,
            doctor,
            clinic,
            request.type,
            start,
            request.symptoms,
            request.notes,
        )

    @storage_guarded("book_emergency_appointment")
    async def book_emergency_appointment(
        self, user_id: UUID, request: EmergencyBookingRequest
    ) -> BookingResult:
        """
        Book the first emergency-available doctor free at the requested time.

        The advance-booking window, weekly pattern and per-user limit do not
        apply. Candidates are tried best rated first.
        """
        operation = "book_emergency_appointment"
        now = self._now()
        start = request.preferred_start_time
        if start is None:
            start = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        elif start < now:
            return self._reject(
                operation, BookingError.INVALID_TIME_SLOT, "Start time must not be in the past"
            )

        candidates = [
            d
            for d in await self.doctors.find_emergency_available(request.city)
            if d.accepts_bookings() and d.supports(request.type)
        ]
        for doctor in candidates:
            result = await self._place_booking(
                operation,
                user_id,
                doctor,
                None,
                request.type,
                start,
                request.symptoms,
                request.notes,
                is_emergency=True,
                event=NotificationEvent.EMERGENCY_BOOKED,
            )
            if result.error not in (
                BookingError.TIME_SLOT_OCCUPIED,
                BookingError.DOCTOR_NOT_AVAILABLE,
            ):
                return result

        return self._reject(
            operation,
            BookingError.EMERGENCY_BOOKING_FAILED,
            "No emergency doctor is available right now",
            city=request.city,
            candidates=len(candidates),
        )

    @storage_guarded("book_follow_up")
    async def book_follow_up(
        self, actor: Actor, parent_appointment_id: UUID, request: FollowUpRequest
    ) -> BookingResult:
        """Book a follow-up with the same doctor within the follow-up window."""
        operation = "book_follow_up"
        parent = await self.appointments.get(parent_appointment_id)
        if parent is None:
            return self._reject(
                operation, BookingError.APPOINTMENT_NOT_FOUND, "Appointment not found"
            )
        if parent.user_id != actor.user_id and not actor.is_admin:
            return self._reject(
                operation,
                BookingError.UNAUTHORIZED_ACCESS,
                "Only the patient can book a follow-up",
                appointment_id=str(parent.id),
            )
        if parent.status != AppointmentStatus.COMPLETED:
            return self._reject(
                operation,
                BookingError.FOLLOW_UP_NOT_ALLOWED,
                "Follow-ups can only be booked for completed appointments",
                appointment_id=str(parent.id),
            )

        start = request.preferred_start_time
        rejected = self._check_booking_window(operation, start)
        if rejected:
            return rejected
        if start > parent.end_time + timedelta(days=self.settings.follow_up_window_days):
            return self._reject(
                operation,
                BookingError.FOLLOW_UP_NOT_ALLOWED,
                f"Follow-ups must be within {self.settings.follow_up_window_days} days",
                appointment_id=str(parent.id),
            )

        doctor = await self.doctors.get(parent.doctor_id)
        rejected = self._check_doctor(operation, doctor, parent.type)
        if rejected:
            return rejected

        clinic, rejected = await self._resolve_clinic(operation, parent.clinic_id, parent.type)
        if rejected:
            return rejected

        rejected = await self._check_user_limit(operation, parent.user_id)
        if rejected:
            return rejected

        result = await self._place_booking(
            operation,
            parent.user_id,
            doctor,
            clinic,
            parent.type,
            start,
            parent.symptoms,
            request.notes,
            parent=parent,
            event=NotificationEvent.FOLLOW_UP_BOOKED,
        )
        if result.appointment is None:
            return result

        expected = parent.version
        parent.schedule_follow_up(result.appointment.start_time, request.notes, self._now())
        try:
            await self.appointments.update(parent, expected)
        except StorageError as e:
            # The follow-up itself is booked; the parent's date can be backfilled.
            logger.warning(
                "follow_up_date_not_saved",
                appointment_id=str(parent.id),
                follow_up_id=str(result.appointment.id),
                error=str(e),
            )
        return result

    # ------------------------------------------------------------------
    # Rescheduling and cancellation
    # ------------------------------------------------------------------

    @storage_guarded("reschedule_appointment")
    async def reschedule_appointment(
        self, actor: Actor, appointment_id: UUID, request: RescheduleRequest
    ) -> BookingResult:
        """Move an appointment to a new start time, keeping its duration."""
        operation = "reschedule_appointment"
        appointment, rejected = await self._load(operation, actor, appointment_id)
        if rejected:
            return rejected

        now = self._now()
        if not appointment.can_be_rescheduled(now):
            return self._reject(
                operation,
                BookingError.CANNOT_RESCHEDULE,
                f"Appointments can only be rescheduled at least "
                f"{self.settings.reschedule_notice_minutes} minutes before they start",
                appointment,
                appointment_id=str(appointment.id),
                status=appointment.status.value,
            )

        new_start = request.new_start_time
        if not appointment.is_emergency:
            rejected = self._check_booking_window(operation, new_start)
            if rejected:
                return rejected
        elif new_start <= now:
            return self._reject(
                operation, BookingError.INVALID_TIME_SLOT, "Start time must be in the future"
            )
        new_end = new_start + appointment.duration

        doctor = await self.doctors.get(appointment.doctor_id)
        if doctor is None:
            return self._reject(operation, BookingError.DOCTOR_NOT_FOUND, "Doctor not found")
        clinic, rejected = await self._resolve_clinic(
            operation, appointment.clinic_id, appointment.type
        )
        if rejected:
            return rejected
        rejected = self._check_slot_rules(
            operation,
            doctor,
            clinic,
            appointment.type,
            new_start,
            new_end,
            check_pattern=not appointment.is_emergency,
        )
        if rejected:
            return rejected

        conflicts = await self.appointments.find_conflicting(
            appointment.doctor_id, new_start, new_end, exclude_id=appointment.id
        )
        if conflicts:
            return self._reject(
                operation,
                BookingError.TIME_SLOT_OCCUPIED,
                "The requested time slot is already booked",
                appointment_id=str(appointment.id),
                start_time=new_start.isoformat(),
            )

        expected = appointment.version
        try:
            appointment.reschedule(new_start, now)
        except InvalidStateTransition as e:
            return self._reject(operation, BookingError.CANNOT_RESCHEDULE, str(e))

        saved, rejected = await self._save(operation, appointment, expected, check_slot=True)
        if rejected:
            return rejected

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(saved.id),
            start_time=saved.start_time.isoformat(),
            reason=request.reason,
        )
        await self._notify(NotificationEvent.APPOINTMENT_RESCHEDULED, saved)
        return BookingResult.ok(saved, "Appointment rescheduled")

    @storage_guarded("cancel_appointment")
    async def cancel_appointment(
        self, actor: Actor, appointment_id: UUID, request: CancellationRequest
    ) -> BookingResult:
        """
        Cancel an appointment and refund the payment when one was made.

        A failed refund leaves the appointment cancelled with
        ``refund_processed`` false and returns REFUND_FAILED, so the refund
        can be retried without cancelling again.
        """
        operation = "cancel_appointment"
        appointment, rejected = await self._load(operation, actor, appointment_id)
        if rejected:
            return rejected

        now = self._now()
        if not appointment.can_be_cancelled(now):
            return self._reject(
                operation,
                BookingError.CANNOT_CANCEL,
                "Appointment can no longer be cancelled",
                appointment,
                appointment_id=str(appointment.id),
                status=appointment.status.value,
            )

        refund_amount = self._refund_amount(appointment, actor, now)
        expected = appointment.version
        appointment.cancel(
            request.reason,
            request.description,
            cancelled_by=actor.user_id,
            now=now,
            refund_amount=refund_amount,
        )
        saved, rejected = await self._save(operation, appointment, expected)
        if rejected:
            return rejected

        logger.info(
            "appointment_cancelled",
            appointment_id=str(saved.id),
            reason=request.reason.value,
            refund_amount=str(refund_amount),
        )

        result = BookingResult.ok(saved, "Appointment cancelled")
        refunding = saved.requires_refund() and refund_amount > 0 and self.payments is not None
        if refunding:
            result = await self._refund(saved, refund_amount, request.reason.value)

        await self._notify(NotificationEvent.APPOINTMENT_CANCELLED, result.appointment or saved)
        if refunding and result.success:
            await self._notify(NotificationEvent.REFUND_PROCESSED, result.appointment)
        return result

    async def _refund(
        self, appointment: Appointment, amount: Decimal, reason: str
    ) -> BookingResult:
        try:
            refund_id, _ = await self.payments.refund(
                appointment.payment_info.payment_id, amount, reason
            )
        except PaymentGatewayError as e:
            logger.error(
                "refund_failed",
                appointment_id=str(appointment.id),
                amount=str(amount),
                error=e.message,
            )
            return BookingResult.fail(
                BookingError.REFUND_FAILED,
                "Appointment cancelled but the refund could not be processed yet",
                appointment,
            )

        expected = appointment.version
        appointment.process_refund(amount, refund_id, self._now())
        saved, rejected = await self._save("process_refund", appointment, expected)
        if rejected:
            return rejected
        return BookingResult.ok(saved, "Appointment cancelled and refund processed")

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        operation: str,
        actor: Actor,
        appointment_id: UUID,
        apply: Callable[[Appointment, datetime], None],
        event: NotificationEvent,
        message: str,
    ) -> BookingResult:
        appointment, rejected = await self._load(operation, actor, appointment_id, manage=True)
        if rejected:
            return rejected

        expected = appointment.version
        try:
            apply(appointment, self._now())
        except InvalidStateTransition as e:
            return self._reject(
                operation,
                BookingError.INVALID_STATE_TRANSITION,
                str(e),
                appointment,
                appointment_id=str(appointment.id),
                status=appointment.status.value,
            )

        saved, rejected = await self._save(operation, appointment, expected)
        if rejected:
            return rejected

        logger.info(
            "appointment_status_changed",
            operation=operation,
            appointment_id=str(saved.id),
            status=saved.status.value,
        )
        await self._notify(event, saved)
        return BookingResult.ok(saved, message)

    @storage_guarded("confirm_appointment")
    async def confirm_appointment(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        """Confirm a pending appointment; online visits get their video room here."""
        base_url = self.settings.video_call_base_url

        def apply(appointment: Appointment, now: datetime) -> None:
            appointment.confirm(now)
            if appointment.type == AppointmentType.ONLINE:
                appointment.attach_video_call(base_url, now)

        return await self._transition(
            "confirm_appointment",
            actor,
            appointment_id,
            apply,
            NotificationEvent.APPOINTMENT_CONFIRMED,
            "Appointment confirmed",
        )

    @storage_guarded("start_appointment")
    async def start_appointment(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        return await self._transition(
            "start_appointment",
            actor,
            appointment_id,
            lambda appointment, now: appointment.start_consultation(now),
            NotificationEvent.CONSULTATION_STARTED,
            "Consultation started",
        )

    @storage_guarded("complete_appointment")
    async def complete_appointment(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        return await self._transition(
            "complete_appointment",
            actor,
            appointment_id,
            lambda appointment, now: appointment.complete(now),
            NotificationEvent.APPOINTMENT_COMPLETED,
            "Consultation completed",
        )

    @storage_guarded("mark_no_show")
    async def mark_no_show(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        return await self._transition(
            "mark_no_show",
            actor,
            appointment_id,
            lambda appointment, now: appointment.mark_no_show(now),
            NotificationEvent.APPOINTMENT_NO_SHOW,
            "Appointment marked as no-show",
        )

    @storage_guarded("delete_appointment")
    async def delete_appointment(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        """Soft-delete an appointment. Admin only."""
        operation = "delete_appointment"
        if not actor.is_admin:
            return self._reject(
                operation,
                BookingError.UNAUTHORIZED_ACCESS,
                "Only administrators can delete appointments",
                actor_id=str(actor.user_id),
            )
        appointment, rejected = await self._load(operation, actor, appointment_id)
        if rejected:
            return rejected

        expected = appointment.version
        appointment.soft_delete(self._now())
        saved, rejected = await self._save(operation, appointment, expected)
        if rejected:
            return rejected

        logger.info("appointment_deleted", appointment_id=str(saved.id))
        return BookingResult.ok(saved, "Appointment deleted")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @storage_guarded("create_payment_order")
    async def create_payment_order(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        """Create (or re-create) the gateway order for an unpaid appointment."""
        operation = "create_payment_order"
        appointment, rejected = await self._load(operation, actor, appointment_id)
        if rejected:
            return rejected
        if self.payments is None or not self.settings.payments_enabled:
            return self._reject(operation, BookingError.PAYMENT_FAILED, "Payments are disabled")
        if appointment.status not in QUEUED_STATES - {AppointmentStatus.IN_PROGRESS} or (
            appointment.payment_info.status == PaymentStatus.PAID
        ):
            return self._reject(
                operation,
                BookingError.INVALID_STATE_TRANSITION,
                "Appointment does not need payment",
                appointment,
                appointment_id=str(appointment.id),
            )
        return await self._attach_payment_order(appointment)

    @storage_guarded("verify_payment")
    async def verify_payment(
        self, actor: Actor, appointment_id: UUID, request: PaymentVerificationRequest
    ) -> BookingResult:
        """Verify the checkout signature and record the payment."""
        operation = "verify_payment"
        appointment, rejected = await self._load(operation, actor, appointment_id)
        if rejected:
            return rejected
        if self.payments is None:
            return self._reject(operation, BookingError.PAYMENT_FAILED, "Payments are disabled")
        if appointment.payment_info.order_id != request.order_id:
            return self._reject(
                operation,
                BookingError.VALIDATION_ERROR,
                "Order does not belong to this appointment",
                appointment_id=str(appointment.id),
            )

        now = self._now()
        expected = appointment.version
        if not self.payments.verify_signature(
            request.order_id, request.payment_id, request.signature
        ):
            logger.warning(
                "payment_signature_invalid",
                appointment_id=str(appointment.id),
                order_id=request.order_id,
            )
            # A paid or already failed payment keeps its recorded status.
            if appointment.payment_info.status == PaymentStatus.PENDING:
                appointment.mark_payment_failed("signature mismatch", now)
                saved, rejected = await self._save(operation, appointment, expected)
                if rejected:
                    return rejected
                appointment = saved
            return BookingResult.fail(
                BookingError.PAYMENT_FAILED, "Payment verification failed", appointment
            )

        try:
            appointment.record_payment(request.payment_id, request.method, now)
        except InvalidStateTransition as e:
            return self._reject(
                operation, BookingError.INVALID_STATE_TRANSITION, str(e), appointment
            )
        saved, rejected = await self._save(operation, appointment, expected)
        if rejected:
            return rejected

        logger.info(
            "payment_recorded",
            appointment_id=str(saved.id),
            payment_id=request.payment_id,
        )
        await self._notify(NotificationEvent.PAYMENT_RECEIVED, saved)
        return BookingResult.ok(saved, "Payment verified")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @storage_guarded("get_appointment")
    async def get_appointment(self, actor: Actor, appointment_id: UUID) -> BookingResult:
        appointment, rejected = await self._load("get_appointment", actor, appointment_id)
        if rejected:
            return rejected
        return BookingResult.ok(appointment)

    @storage_guarded("list_user_appointments", AppointmentListResult)
    async def list_user_appointments(
        self,
        user_id: UUID,
        status: AppointmentStatus | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> AppointmentListResult:
        statuses = {status} if status else None
        items, total = await self.appointments.list_for_user(user_id, statuses, skip, limit)
        return AppointmentListResult(BookingError.SUCCESS, items=items, total=total)

    def _day_bounds(self, day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, datetime.min.time(), tzinfo=self.tz)
        end = start + timedelta(days=1)
        return start.astimezone(UTC), end.astimezone(UTC)

    @storage_guarded("get_doctor_schedule", AppointmentListResult)
    async def get_doctor_schedule(self, doctor_id: UUID, day: date) -> AppointmentListResult:
        """Non-cancelled appointments of a doctor on one day, by start time."""
        start, end = self._day_bounds(day)
        items = await self.appointments.list_for_doctor(
            doctor_id, start, end, statuses=NON_CANCELLED_STATES
        )
        return AppointmentListResult(BookingError.SUCCESS, items=items, total=len(items))

    async def _queue_position(self, appointment: Appointment) -> int:
        """Number of the doctor's active appointments earlier the same day."""
        local_day = appointment.start_time.astimezone(self.tz).date()
        start, end = self._day_bounds(local_day)
        same_day = await self.appointments.list_for_doctor(
            appointment.doctor_id, start, end, statuses=set(QUEUED_STATES)
        )
        return sum(
            1
            for other in same_day
            if other.id != appointment.id and other.start_time < appointment.start_time
        )

    @storage_guarded("get_queue_position", QueueResult)
    async def get_queue_position(self, appointment_id: UUID) -> QueueResult:
        """
        Position of an appointment in its doctor's queue for the day.

        Returns:
            QueueResult with ``position`` set (0 means next in line), or
            APPOINTMENT_NOT_FOUND
        """
        appointment = await self.appointments.get(appointment_id)
        if appointment is None:
            return QueueResult(BookingError.APPOINTMENT_NOT_FOUND, "Appointment not found")
        position = await self._queue_position(appointment)
        return QueueResult(BookingError.SUCCESS, position=position)

    @storage_guarded("get_estimated_wait_time", QueueResult)
    async def get_estimated_wait_time(self, appointment_id: UUID) -> QueueResult:
        """Queue position times the doctor's consultation length."""
        appointment = await self.appointments.get(appointment_id)
        if appointment is None:
            return QueueResult(BookingError.APPOINTMENT_NOT_FOUND, "Appointment not found")
        position = await self._queue_position(appointment)
        doctor = await self.doctors.get(appointment.doctor_id)
        minutes = (
            doctor.consultation_duration_minutes if doctor else appointment.duration_minutes
        )
        return QueueResult(
            BookingError.SUCCESS,
            position=position,
            estimated_wait=timedelta(minutes=position * minutes),
        )

    @storage_guarded("get_doctor_availability", AvailabilityResult)
    async def get_doctor_availability(
        self,
        doctor_id: UUID,
        start_date: date,
        end_date: date,
        appointment_type: AppointmentType | None = None,
        clinic_id: UUID | None = None,
    ) -> AvailabilityResult:
        """
        Free slots for a doctor between two calendar days, inclusive.

        Args:
            doctor_id: Doctor to search
            start_date: First day, in the schedule timezone
            end_date: Last day
            appointment_type: Defaults to the doctor's first consultation type
            clinic_id: Restrict offline slots to this clinic's working hours

        Returns:
            AvailabilityResult whose ``slots`` iterator yields in ascending order
        """
        if end_date < start_date:
            return AvailabilityResult(
                BookingError.VALIDATION_ERROR, "end_date must not be before start_date"
            )
        if (end_date - start_date).days >= MAX_AVAILABILITY_RANGE_DAYS:
            return AvailabilityResult(
                BookingError.VALIDATION_ERROR,
                f"Date range must not exceed {MAX_AVAILABILITY_RANGE_DAYS} days",
            )
        return await self._availability(
            doctor_id, start_date, end_date, appointment_type, clinic_id
        )

    @storage_guarded("get_next_available_slots", AvailabilityResult)
    async def get_next_available_slots(
        self,
        doctor_id: UUID,
        count: int = 5,
        appointment_type: AppointmentType | None = None,
        clinic_id: UUID | None = None,
    ) -> AvailabilityResult:
        """The earliest ``count`` free slots within the search horizon."""
        today = self._now().astimezone(self.tz).date()
        last_day = today + timedelta(days=self.settings.availability_search_days - 1)
        result = await self._availability(
            doctor_id, today, last_day, appointment_type, clinic_id
        )
        if result.success:
            result.slots = itertools.islice(result.slots, count)
        return result

    async def _availability(
        self,
        doctor_id: UUID,
        start_date: date,
        end_date: date,
        appointment_type: AppointmentType | None,
        clinic_id: UUID | None,
    ) -> AvailabilityResult:
        doctor = await self.doctors.get(doctor_id)
        if doctor is None:
            return AvailabilityResult(BookingError.DOCTOR_NOT_FOUND, "Doctor not found")
        if not doctor.is_verified:
            return AvailabilityResult(BookingError.DOCTOR_NOT_VERIFIED, "Doctor is not verified")

        appointment_type = appointment_type or (
            doctor.consultation_types[0] if doctor.consultation_types else None
        )
        if appointment_type is None or not doctor.accepts_bookings() or not doctor.supports(
            appointment_type
        ):
            return AvailabilityResult(
                BookingError.DOCTOR_NOT_AVAILABLE, "Doctor is not accepting these bookings"
            )

        clinic = None
        if clinic_id is not None:
            clinic = await self.clinics.get(clinic_id)
            if clinic is None:
                return AvailabilityResult(BookingError.CLINIC_NOT_FOUND, "Clinic not found")
            if not clinic.is_active:
                return AvailabilityResult(BookingError.CLINIC_CLOSED, "Clinic is not active")

        range_start, _ = self._day_bounds(start_date)
        _, range_end = self._day_bounds(end_date)
        # Appointments that started the day before can still run into the range.
        booked = await self.appointments.list_for_doctor(
            doctor_id,
            range_start - timedelta(days=1),
            range_end,
            statuses=NON_CANCELLED_STATES,
        )

        # Only offer what book_appointment would accept.
        now = self._now()
        earliest = now + timedelta(minutes=self.settings.min_booking_lead_minutes)
        slots = generate_slots(
            doctor,
            clinic,
            appointment_type,
            start_date,
            end_date,
            [(a.start_time, a.end_time) for a in booked],
            self.tz,
            doctor.fee_for(appointment_type),
            not_before=now,
            not_after=now + timedelta(days=self.settings.max_advance_booking_days),
        )
        return AvailabilityResult(
            BookingError.SUCCESS, slots=(slot for slot in slots if slot.start >= earliest)
        )
