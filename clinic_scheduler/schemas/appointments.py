"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is permitted from this status."""
        return self in TERMINAL_STATUSES


# Statuses that hold a slot in the doctor's day
OCCUPYING_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    appointment_time: time
    duration_minutes: int | None = Field(None, ge=15, le=120)
    reason: str | None = Field(None, max_length=500)


class AppointmentUpdate(BaseModel):
    """Schema for rescheduling or annotating a scheduled appointment."""

    appointment_date: date | None = None
    appointment_time: time | None = None
    duration_minutes: int | None = Field(None, ge=15, le=120)
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=2000)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    status: AppointmentStatus
    reason: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: UUID | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    patient_id: UUID | None = None
    doctor_id: UUID | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AvailableSlotsResponse(BaseModel):
    """Free start times for a doctor on a given date."""

    doctor_id: UUID
    date: date
    duration_minutes: int
    slots: list[time]
