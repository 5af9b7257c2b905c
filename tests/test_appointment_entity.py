"""Tests for the appointment state machine."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from medibook.core.exceptions import InvalidStateTransition
from medibook.domain.appointments import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    CancellationReason,
    PaymentInfo,
    PaymentStatus,
    generate_confirmation_code,
)
from tests.factories import NOW


def make_appointment(
    start=None,
    minutes: int = 30,
    status: AppointmentStatus = AppointmentStatus.PENDING,
    type: AppointmentType = AppointmentType.OFFLINE,
    **overrides,
) -> Appointment:
    start = start or NOW + timedelta(days=1)
    return Appointment(
        user_id=uuid4(),
        doctor_id=uuid4(),
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        type=type,
        status=status,
        **overrides,
    )


def paid(amount: str = "500.00") -> PaymentInfo:
    return PaymentInfo(
        payment_id="pay_1", amount=Decimal(amount), status=PaymentStatus.PAID, paid_at=NOW
    )


def test_new_appointment_defaults():
    """A new appointment is pending, versioned and has a confirmation code."""
    appointment = make_appointment()

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.version == 1
    assert appointment.confirmation_code.startswith("APT")
    assert appointment.appointment_date == appointment.start_time.date()
    assert appointment.duration_minutes == 30


def test_confirmation_codes_are_unique():
    codes = {generate_confirmation_code() for _ in range(200)}
    assert len(codes) == 200
    assert all(len(code) == 11 for code in codes)


def test_slot_must_have_positive_length():
    with pytest.raises(ValidationError):
        make_appointment(minutes=0)


def test_slot_shorter_than_minimum_is_rejected():
    with pytest.raises(ValidationError):
        make_appointment(minutes=10)


def test_naive_times_are_read_as_utc():
    start = (NOW + timedelta(days=1)).replace(tzinfo=None)
    appointment = Appointment(
        user_id=uuid4(),
        doctor_id=uuid4(),
        start_time=start,
        end_time=start + timedelta(minutes=30),
        type=AppointmentType.ONLINE,
    )
    assert appointment.start_time.utcoffset() == timedelta(0)


def test_full_lifecycle_online():
    appointment = make_appointment(type=AppointmentType.ONLINE)

    appointment.confirm(NOW)
    assert appointment.status == AppointmentStatus.CONFIRMED
    assert appointment.confirmed_at == NOW

    started = appointment.start_time
    appointment.start_consultation(started)
    assert appointment.status == AppointmentStatus.IN_PROGRESS
    assert appointment.consultation_info.call_started_at == started

    appointment.complete(started + timedelta(minutes=25))
    assert appointment.status == AppointmentStatus.COMPLETED
    assert appointment.consultation_info.duration_minutes == 25


def test_offline_visit_can_complete_from_confirmed():
    appointment = make_appointment(status=AppointmentStatus.CONFIRMED)
    appointment.complete(NOW)
    assert appointment.status == AppointmentStatus.COMPLETED


def test_online_visit_cannot_skip_in_progress():
    appointment = make_appointment(status=AppointmentStatus.CONFIRMED, type=AppointmentType.ONLINE)
    with pytest.raises(InvalidStateTransition):
        appointment.complete(NOW)


def test_rescheduled_appointment_can_start():
    appointment = make_appointment(status=AppointmentStatus.RESCHEDULED)
    appointment.start_consultation(NOW)
    assert appointment.status == AppointmentStatus.IN_PROGRESS


LEGAL_FROM = {
    "confirm": {AppointmentStatus.PENDING},
    "start_consultation": {AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED},
}


@pytest.mark.parametrize("operation", sorted(LEGAL_FROM))
@pytest.mark.parametrize("status", list(AppointmentStatus))
def test_illegal_transition_leaves_appointment_unchanged(operation, status):
    """Rejected transitions raise and do not modify any field."""
    if status in LEGAL_FROM[operation]:
        pytest.skip("legal transition")
    appointment = make_appointment(status=status)
    before = appointment.model_dump()

    with pytest.raises(InvalidStateTransition) as exc_info:
        getattr(appointment, operation)(NOW)

    assert exc_info.value.current_status == status.value
    assert exc_info.value.operation == operation
    assert appointment.model_dump() == before


@pytest.mark.parametrize(
    "status",
    [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW],
)
def test_terminal_states_accept_nothing(status):
    appointment = make_appointment(status=status)
    before = appointment.model_dump()

    for attempt in (
        lambda: appointment.confirm(NOW),
        lambda: appointment.start_consultation(NOW),
        lambda: appointment.complete(NOW),
        lambda: appointment.cancel(CancellationReason.OTHER, None, uuid4(), NOW),
        lambda: appointment.reschedule(NOW + timedelta(days=3), NOW),
        lambda: appointment.mark_no_show(appointment.start_time + timedelta(hours=1)),
    ):
        with pytest.raises(InvalidStateTransition):
            attempt()

    assert appointment.model_dump() == before


def test_cancel_before_start():
    appointment = make_appointment(status=AppointmentStatus.CONFIRMED, payment_info=paid())
    cancelled_by = uuid4()

    appointment.cancel(CancellationReason.PATIENT_REQUEST, "Feeling better", cancelled_by, NOW)

    assert appointment.status == AppointmentStatus.CANCELLED
    info = appointment.cancellation_info
    assert info.cancelled_by == cancelled_by
    assert info.cancelled_at == NOW
    assert info.refund_amount == Decimal("500.00")
    assert info.refund_processed is False
    assert appointment.requires_refund()


def test_cancel_after_start_is_rejected():
    appointment = make_appointment(start=NOW - timedelta(minutes=1))
    before = appointment.model_dump()

    assert not appointment.can_be_cancelled(NOW)
    with pytest.raises(InvalidStateTransition):
        appointment.cancel(CancellationReason.OTHER, None, uuid4(), NOW)
    assert appointment.model_dump() == before


def test_cancel_exactly_at_start_is_rejected():
    appointment = make_appointment(start=NOW)
    assert not appointment.can_be_cancelled(NOW)


def test_reschedule_keeps_duration():
    appointment = make_appointment(minutes=45, status=AppointmentStatus.CONFIRMED)
    new_start = NOW + timedelta(days=5)

    appointment.reschedule(new_start, NOW)

    assert appointment.status == AppointmentStatus.RESCHEDULED
    assert appointment.start_time == new_start
    assert appointment.end_time == new_start + timedelta(minutes=45)
    assert appointment.appointment_date == new_start.date()


def test_reschedule_while_pending_stays_pending():
    appointment = make_appointment()
    new_start = NOW + timedelta(days=5)

    appointment.reschedule(new_start, NOW)

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.start_time == new_start
    with pytest.raises(InvalidStateTransition):
        appointment.start_consultation(NOW)

    appointment.confirm(NOW)
    assert appointment.status == AppointmentStatus.CONFIRMED
    assert appointment.confirmed_at == NOW


def test_reschedule_needs_notice():
    appointment = make_appointment(start=NOW + timedelta(minutes=90))
    before = appointment.model_dump()

    assert not appointment.can_be_rescheduled(NOW)
    with pytest.raises(InvalidStateTransition):
        appointment.reschedule(NOW + timedelta(days=2), NOW)
    assert appointment.model_dump() == before


def test_reschedule_at_exact_notice_boundary_is_allowed():
    appointment = make_appointment(start=NOW + timedelta(minutes=120))
    assert appointment.can_be_rescheduled(NOW)


def test_in_progress_cannot_be_rescheduled():
    appointment = make_appointment(status=AppointmentStatus.IN_PROGRESS)
    assert not appointment.can_be_rescheduled(NOW)


def test_no_show_only_after_start():
    appointment = make_appointment(status=AppointmentStatus.CONFIRMED)

    with pytest.raises(InvalidStateTransition):
        appointment.mark_no_show(appointment.start_time - timedelta(minutes=1))

    appointment.mark_no_show(appointment.start_time + timedelta(minutes=15))
    assert appointment.status == AppointmentStatus.NO_SHOW


def test_full_refund_processed_once():
    appointment = make_appointment(payment_info=paid())
    appointment.cancel(CancellationReason.PATIENT_REQUEST, None, uuid4(), NOW)

    appointment.process_refund(Decimal("500.00"), "rfnd_1", NOW)

    assert appointment.payment_info.status == PaymentStatus.REFUNDED
    assert appointment.cancellation_info.refund_processed is True
    assert appointment.cancellation_info.refund_id == "rfnd_1"
    assert not appointment.requires_refund()

    before = appointment.model_dump()
    with pytest.raises(InvalidStateTransition):
        appointment.process_refund(Decimal("500.00"), "rfnd_2", NOW)
    assert appointment.model_dump() == before


def test_partial_refund():
    appointment = make_appointment(payment_info=paid())
    appointment.cancel(CancellationReason.PATIENT_REQUEST, None, uuid4(), NOW)

    appointment.process_refund(Decimal("250.00"), "rfnd_1", NOW)

    assert appointment.payment_info.status == PaymentStatus.PARTIALLY_REFUNDED
    assert appointment.cancellation_info.refund_amount == Decimal("250.00")


def test_unpaid_cancellation_needs_no_refund():
    appointment = make_appointment()
    appointment.cancel(CancellationReason.PATIENT_REQUEST, None, uuid4(), NOW)

    assert not appointment.requires_refund()
    with pytest.raises(InvalidStateTransition):
        appointment.process_refund(Decimal("1.00"), "rfnd_1", NOW)


def test_record_payment():
    appointment = make_appointment()
    appointment.attach_payment_order("order_1", NOW)
    appointment.record_payment("pay_1", "upi", NOW)

    assert appointment.payment_info.status == PaymentStatus.PAID
    assert appointment.payment_info.order_id == "order_1"
    assert appointment.payment_info.paid_at == NOW

    with pytest.raises(InvalidStateTransition):
        appointment.record_payment("pay_2", "card", NOW)


def test_video_call_only_for_online():
    online = make_appointment(type=AppointmentType.ONLINE)
    online.attach_video_call("https://meet.example.com/room/", NOW)
    assert online.consultation_info.link == (
        f"https://meet.example.com/room/{online.consultation_info.meeting_id}"
    )

    offline = make_appointment()
    offline.attach_video_call("https://meet.example.com/room", NOW)
    assert offline.consultation_info is None


def test_follow_up_only_on_completed():
    appointment = make_appointment(status=AppointmentStatus.CONFIRMED)
    with pytest.raises(InvalidStateTransition):
        appointment.schedule_follow_up(NOW + timedelta(days=7))

    appointment.complete(NOW)
    appointment.schedule_follow_up(NOW + timedelta(days=7), "Review reports", NOW)
    assert appointment.follow_up_date == NOW + timedelta(days=7)
    assert appointment.follow_up_notes == "Review reports"
