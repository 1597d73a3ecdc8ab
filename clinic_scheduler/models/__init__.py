"""Database models."""

from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.models.base import metadata
from clinic_scheduler.models.doctors import doctors
from clinic_scheduler.models.notifications import notifications
from clinic_scheduler.models.patients import patients
from clinic_scheduler.models.users import users

__all__ = [
    "appointments",
    "doctors",
    "metadata",
    "notifications",
    "patients",
    "users",
]
