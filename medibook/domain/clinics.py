"""Clinic aggregate as seen by the booking engine."""

from datetime import datetime, time
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from medibook.domain.doctors import WEEKDAYS, TimeWindow


class ClinicStatus(str, Enum):
    """Clinic status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_VERIFICATION = "pending_verification"
    SUSPENDED = "suspended"


class WorkingHours(BaseModel):
    """Opening hours for one weekday, with an optional break."""

    open: time | None = None
    close: time | None = None
    break_start: time | None = None
    break_end: time | None = None
    is_closed: bool = False

    @model_validator(mode="after")
    def validate_hours(self) -> "WorkingHours":
        if self.is_closed:
            return self
        if self.open is None or self.close is None:
            raise ValueError("open and close are required unless the day is closed")
        if self.open >= self.close:
            raise ValueError("open must be before close")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be set together")
        if self.break_start is not None:
            if not (self.open <= self.break_start < self.break_end <= self.close):
                raise ValueError("break must lie inside opening hours")
        return self

    def open_windows(self) -> list[TimeWindow]:
        """Opening hours split around the break."""
        if self.is_closed:
            return []
        if self.break_start is None:
            return [TimeWindow(start=self.open, end=self.close)]
        windows = []
        if self.open < self.break_start:
            windows.append(TimeWindow(start=self.open, end=self.break_start))
        if self.break_end < self.close:
            windows.append(TimeWindow(start=self.break_end, end=self.close))
        return windows


class Clinic(BaseModel):
    """Clinic fields consumed by booking and availability."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    address: str
    city: str | None = None
    status: ClinicStatus = ClinicStatus.ACTIVE
    # Weekdays missing from the mapping are closed.
    working_hours: dict[str, WorkingHours] = Field(default_factory=dict)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("working_hours", mode="before")
    @classmethod
    def default_hours(cls, v):
        return v or {}

    @field_validator("working_hours")
    @classmethod
    def validate_weekdays(cls, v: dict[str, WorkingHours]) -> dict[str, WorkingHours]:
        normalized = {}
        for day, hours in v.items():
            key = day.lower()
            if key not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day}")
            normalized[key] = hours
        return normalized

    @property
    def is_active(self) -> bool:
        return self.status == ClinicStatus.ACTIVE

    def windows_on(self, weekday: int) -> list[TimeWindow]:
        """Open windows for a weekday index (Monday is 0), break excluded."""
        hours = self.working_hours.get(WEEKDAYS[weekday])
        if hours is None:
            return []
        return hours.open_windows()
