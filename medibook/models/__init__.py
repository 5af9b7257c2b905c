"""Database models."""

from medibook.models.appointments import appointments
from medibook.models.clinics import clinics
from medibook.models.doctors import doctors

__all__ = [
    "appointments",
    "clinics",
    "doctors",
]
