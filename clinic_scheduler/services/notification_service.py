"""Notification triggers and best-effort delivery."""

import asyncio
from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.models.notifications import notifications
from clinic_scheduler.schemas.appointments import AppointmentResponse
from clinic_scheduler.schemas.notifications import (
    NotificationRequest,
    NotificationType,
    Participant,
)

logger = structlog.get_logger(__name__)


def _when(appointment: AppointmentResponse) -> tuple[str, str]:
    return (
        appointment.appointment_date.isoformat(),
        appointment.appointment_time.strftime("%H:%M"),
    )


class NotificationCoordinator:
    """
    Map lifecycle and approval events to the notifications they trigger.

    Every method is pure: it only builds requests and never delivers them.
    """

    @staticmethod
    def booking_created(
        appointment: AppointmentResponse,
        patient: Participant,
        doctor: Participant,
    ) -> list[NotificationRequest]:
        """Notify the doctor of a new booking and confirm it to the patient."""
        day, at = _when(appointment)
        return [
            NotificationRequest(
                recipient_user_id=doctor.user_id,
                notification_type=NotificationType.NEW_APPOINTMENT,
                title="New Appointment",
                body=f"New appointment scheduled with patient {patient.full_name} on {day} at {at}",
            ),
            NotificationRequest(
                recipient_user_id=patient.user_id,
                notification_type=NotificationType.APPOINTMENT_CONFIRMATION,
                title="Appointment Scheduled",
                body=(
                    f"Your appointment with Dr. {doctor.full_name} has been scheduled "
                    f"for {day} at {at}"
                ),
            ),
        ]

    @staticmethod
    def booking_cancelled(
        appointment: AppointmentResponse,
        patient: Participant,
        doctor: Participant,
    ) -> list[NotificationRequest]:
        """Tell both parties that an appointment was cancelled."""
        day, at = _when(appointment)
        body = f"Your appointment on {day} at {at} has been cancelled."
        if appointment.cancellation_reason:
            body += f" Reason: {appointment.cancellation_reason}"

        return [
            NotificationRequest(
                recipient_user_id=recipient.user_id,
                notification_type=NotificationType.APPOINTMENT_CANCELLATION,
                title="Appointment Cancelled",
                body=body,
            )
            for recipient in (patient, doctor)
        ]

    @staticmethod
    def doctor_approved(doctor: Participant) -> list[NotificationRequest]:
        """Welcome a doctor whose application was approved."""
        return [
            NotificationRequest(
                recipient_user_id=doctor.user_id,
                notification_type=NotificationType.SYSTEM,
                title="Application Approved",
                body=(
                    "Congratulations! Your doctor application has been approved. "
                    "You can now log in and start managing appointments."
                ),
            )
        ]

    @staticmethod
    def appointment_reminder(
        appointment: AppointmentResponse,
        patient: Participant,
        doctor: Participant,
    ) -> list[NotificationRequest]:
        """Remind the patient of an upcoming appointment."""
        day, at = _when(appointment)
        return [
            NotificationRequest(
                recipient_user_id=patient.user_id,
                notification_type=NotificationType.APPOINTMENT_REMINDER,
                title="Appointment Reminder",
                body=f"Reminder: You have an appointment on {day} with Dr. {doctor.full_name} at {at}",
            )
        ]


class Notifier(Protocol):
    """External delivery capability."""

    async def __call__(
        self,
        user_id: UUID,
        notification_type: NotificationType,
        title: str,
        body: str,
    ) -> None: ...


class DatabaseNotificationSink:
    """Default notifier: stores each notification for the user's inbox."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize sink with its own session factory."""
        self.session_factory = session_factory

    async def __call__(
        self,
        user_id: UUID,
        notification_type: NotificationType,
        title: str,
        body: str,
    ) -> None:
        """Insert a notification row in a separate transaction."""
        async with self.session_factory() as session:
            await session.execute(
                insert(notifications).values(
                    user_id=user_id,
                    notification_type=notification_type.value,
                    title=title,
                    body=body,
                )
            )
            await session.commit()


class NotificationDispatcher:
    """
    Hand notification requests to a notifier without blocking the caller.

    Each request is delivered in its own task. A failed delivery is logged
    and dropped; it never propagates to the operation that triggered it.
    """

    def __init__(self, notifier: Notifier):
        """Initialize dispatcher with the delivery capability."""
        self.notifier = notifier
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch(self, requests: Iterable[NotificationRequest]) -> None:
        """Schedule delivery of every request."""
        loop = asyncio.get_running_loop()
        for request in requests:
            task = loop.create_task(self._deliver(request))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, request: NotificationRequest) -> None:
        try:
            await self.notifier(
                request.recipient_user_id,
                request.notification_type,
                request.title,
                request.body,
            )
        except Exception as e:
            logger.warning(
                "notification_delivery_failed",
                user_id=str(request.recipient_user_id),
                notification_type=request.notification_type.value,
                error=str(e),
            )
            return

        logger.info(
            "notification_delivered",
            user_id=str(request.recipient_user_id),
            notification_type=request.notification_type.value,
        )

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all in-flight deliveries to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
