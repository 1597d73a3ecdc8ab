"""Notification schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class NotificationType(str, Enum):
    """Notification type enumeration."""

    NEW_APPOINTMENT = "new_appointment"
    APPOINTMENT_CONFIRMATION = "appointment_confirmation"
    APPOINTMENT_CANCELLATION = "appointment_cancellation"
    APPOINTMENT_REMINDER = "appointment_reminder"
    SYSTEM = "system"


class Participant(BaseModel):
    """A user taking part in an appointment, as addressed in notifications."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    full_name: str


class NotificationRequest(BaseModel):
    """A notification that must be handed to the delivery collaborator."""

    model_config = ConfigDict(frozen=True)

    recipient_user_id: UUID
    notification_type: NotificationType
    title: str
    body: str
