"""Slot arithmetic for doctor availability.

All intervals are half-open ``[start, end)`` pairs of timezone-aware datetimes,
so back-to-back slots never overlap. Weekly patterns and clinic hours are
wall-clock times interpreted in the schedule timezone.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from medibook.domain.appointments import AppointmentType
from medibook.domain.clinics import Clinic
from medibook.domain.doctors import Doctor, TimeWindow

Interval = tuple[datetime, datetime]


@dataclass(frozen=True)
class AvailabilitySlot:
    """A bookable slot for a doctor."""

    start: datetime
    end: datetime
    fee: Decimal


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test: touching intervals do not overlap."""
    return a_start < b_end and a_end > b_start


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    """Yield every calendar day from start_date to end_date inclusive."""
    day = start_date
    while day <= end_date:
        yield day
        day += timedelta(days=1)


def day_windows(windows: Iterable[TimeWindow], day: date, tz: ZoneInfo) -> list[Interval]:
    """Anchor wall-clock windows to a calendar day and convert them to UTC."""
    result = []
    for window in windows:
        start = datetime.combine(day, window.start, tzinfo=tz).astimezone(UTC)
        end = datetime.combine(day, window.end, tzinfo=tz).astimezone(UTC)
        result.append((start, end))
    return sorted(result)


def intersect(a: list[Interval], b: list[Interval]) -> list[Interval]:
    """Intersection of two sorted interval lists."""
    result = []
    i = j = 0
    while i < len(a) and j < len(b):
        start = max(a[i][0], b[j][0])
        end = min(a[i][1], b[j][1])
        if start < end:
            result.append((start, end))
        if a[i][1] < b[j][1]:
            i += 1
        else:
            j += 1
    return result


def subtract(windows: list[Interval], busy: Iterable[Interval]) -> list[Interval]:
    """Remove busy intervals from sorted free windows."""
    free = list(windows)
    for busy_start, busy_end in sorted(busy):
        remaining = []
        for start, end in free:
            if not overlaps(start, end, busy_start, busy_end):
                remaining.append((start, end))
                continue
            if start < busy_start:
                remaining.append((start, busy_start))
            if busy_end < end:
                remaining.append((busy_end, end))
        free = remaining
    return free


def split(windows: Iterable[Interval], duration: timedelta) -> Iterator[Interval]:
    """Cut free windows into consecutive slots of the given duration."""
    for start, end in windows:
        cursor = start
        while cursor + duration <= end:
            yield cursor, cursor + duration
            cursor += duration


def contains(windows: Iterable[Interval], start: datetime, end: datetime) -> bool:
    """True if [start, end) lies entirely inside one window."""
    return any(w_start <= start and end <= w_end for w_start, w_end in windows)


def _windows_for(
    doctor: Doctor,
    clinic: Clinic | None,
    appointment_type: AppointmentType,
    day: date,
    tz: ZoneInfo,
) -> list[Interval]:
    midnight = datetime.min.time()
    full_day = [
        (
            datetime.combine(day, midnight, tzinfo=tz).astimezone(UTC),
            datetime.combine(day + timedelta(days=1), midnight, tzinfo=tz).astimezone(UTC),
        )
    ]
    weekday = day.weekday()
    windows = full_day
    if doctor.has_weekly_pattern():
        windows = day_windows(doctor.windows_on(weekday), day, tz)
    if clinic is not None and appointment_type == AppointmentType.OFFLINE:
        windows = intersect(windows, day_windows(clinic.windows_on(weekday), day, tz))
    return windows


def _days_touching(start: datetime, end: datetime, tz: ZoneInfo) -> list[date]:
    local_start = start.astimezone(tz).date()
    local_end = (end - timedelta(microseconds=1)).astimezone(tz).date()
    # A window on the previous local day can run past midnight in UTC terms.
    return list(iter_days(local_start - timedelta(days=1), local_end))


def doctor_available_for(doctor: Doctor, start: datetime, end: datetime, tz: ZoneInfo) -> bool:
    """True if the doctor's weekly pattern covers the slot, or no pattern is set."""
    if not doctor.has_weekly_pattern():
        return True
    for day in _days_touching(start, end, tz):
        if contains(day_windows(doctor.windows_on(day.weekday()), day, tz), start, end):
            return True
    return False


def clinic_open_for(clinic: Clinic, start: datetime, end: datetime, tz: ZoneInfo) -> bool:
    """True if the clinic is open for the whole slot, lunch break excluded."""
    for day in _days_touching(start, end, tz):
        if contains(day_windows(clinic.windows_on(day.weekday()), day, tz), start, end):
            return True
    return False


def generate_slots(
    doctor: Doctor,
    clinic: Clinic | None,
    appointment_type: AppointmentType,
    start_date: date,
    end_date: date,
    booked: Iterable[Interval],
    tz: ZoneInfo,
    fee: Decimal,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> Iterator[AvailabilitySlot]:
    """
    Lazily yield free slots in chronological order.

    For each day the doctor's weekly pattern is intersected with the clinic's
    working hours (offline only), booked intervals are subtracted, and the
    rest is cut into consultation-length slots.

    Args:
        doctor: Doctor whose pattern and consultation length apply
        clinic: Clinic for offline visits, or None
        appointment_type: Consultation type being searched
        start_date: First day, in the schedule timezone
        end_date: Last day (inclusive)
        booked: Non-cancelled appointment intervals for the doctor
        tz: Schedule timezone
        fee: Fee attached to each slot
        not_before: Slots starting at or before this instant are skipped
        not_after: Generation stops at the first slot starting after this instant
    """
    booked = sorted(booked)
    duration = timedelta(minutes=doctor.consultation_duration_minutes)
    for day in iter_days(start_date, end_date):
        free = subtract(_windows_for(doctor, clinic, appointment_type, day, tz), booked)
        for slot_start, slot_end in split(free, duration):
            if not_before is not None and slot_start <= not_before:
                continue
            if not_after is not None and slot_start > not_after:
                return
            yield AvailabilitySlot(start=slot_start, end=slot_end, fee=fee)
