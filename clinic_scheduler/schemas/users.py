"""User schemas."""

from enum import Enum


class UserRole(str, Enum):
    """User role enumeration."""

    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"
