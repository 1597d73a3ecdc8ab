"""Appointment lifecycle management."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.exceptions import (
    InvalidStateException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from clinic_scheduler.core.locks import slot_guard
from clinic_scheduler.core.timeutils import Clock, utcnow
from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
)
from clinic_scheduler.services.doctor_service import DoctorService
from clinic_scheduler.services.notification_service import (
    NotificationCoordinator,
    NotificationDispatcher,
)
from clinic_scheduler.services.patient_service import PatientService
from clinic_scheduler.services.scheduling_service import SchedulingService, is_overlap_violation
from clinic_scheduler.services.user_service import UserService

logger = structlog.get_logger(__name__)

# Legal source states for each lifecycle operation
TRANSITIONS: dict[str, frozenset[AppointmentStatus]] = {
    "update": frozenset({AppointmentStatus.SCHEDULED}),
    "cancel": frozenset({AppointmentStatus.SCHEDULED}),
    "complete": frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED}),
    "mark_no_show": frozenset({AppointmentStatus.SCHEDULED}),
}


def is_transition_allowed(operation: str, status: AppointmentStatus) -> bool:
    """Whether ``operation`` may be applied to an appointment in ``status``."""
    return status in TRANSITIONS[operation]


class AppointmentService:
    """Service that moves appointments through their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize service with database session and optional collaborators."""
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _get_row(self, appointment_id: UUID) -> dict | None:
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await self._get_row(appointment_id)
        if not row:
            raise NotFoundException(
                f"Appointment not found with ID: {appointment_id}",
                appointment_id=str(appointment_id),
            )
        return AppointmentResponse.model_validate(row)

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments
        """
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        # Count total
        count_stmt = select(func.count()).select_from(appointments).where(*conditions)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        # Get paginated results
        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(*conditions)
            .order_by(
                appointments.c.appointment_date.desc(),
                appointments.c.appointment_time.desc(),
            )
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def list_upcoming(self, doctor_id: UUID | None = None) -> list[AppointmentResponse]:
        """Scheduled appointments from today onward, soonest first."""
        conditions = [
            appointments.c.status == AppointmentStatus.SCHEDULED.value,
            appointments.c.appointment_date >= self.clock().date(),
        ]
        if doctor_id:
            conditions.append(appointments.c.doctor_id == doctor_id)

        result = await self.db.execute(
            select(appointments)
            .where(*conditions)
            .order_by(appointments.c.appointment_date, appointments.c.appointment_time)
        )
        return [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

    async def count_by_status(self) -> dict[str, int]:
        """Number of appointments in each status."""
        result = await self.db.execute(
            select(appointments.c.status, func.count()).group_by(appointments.c.status)
        )
        counts = {status.value: 0 for status in AppointmentStatus}
        counts.update({status: count for status, count in result.all()})
        return counts

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        appointment_id: UUID,
        operation: str,
        values: dict[str, Any],
    ) -> dict:
        """
        Apply ``values`` only while the appointment is in a legal source state.

        The status guard lives in the UPDATE itself, so a concurrent
        transition that commits first makes this one fail instead of
        overwriting it. The caller commits.

        Raises:
            NotFoundException: If the appointment does not exist
            InvalidStateException: If the current status forbids ``operation``
        """
        legal = TRANSITIONS[operation]
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.status.in_([status.value for status in legal]),
            )
            .values(**values, updated_at=self.clock())
            .returning(appointments)
        )
        row = result.mappings().first()
        if row:
            return dict(row)

        await self.db.rollback()
        current = await self._get_row(appointment_id)
        if not current:
            raise NotFoundException(
                f"Appointment not found with ID: {appointment_id}",
                appointment_id=str(appointment_id),
            )

        logger.info(
            "appointment_transition_rejected",
            appointment_id=str(appointment_id),
            operation=operation,
            current_status=current["status"],
        )
        raise InvalidStateException(
            f"Cannot {operation.replace('_', ' ')} appointment in status {current['status']}",
            appointment_id=str(appointment_id),
            current_status=current["status"],
            operation=operation,
        )

    async def update_appointment(
        self,
        appointment_id: UUID,
        data: AppointmentUpdate,
    ) -> AppointmentResponse:
        """
        Reschedule or annotate a scheduled appointment.

        A changed slot is validated with the booking rules and checked for
        conflicts against the doctor's other appointments on the resulting
        date.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateException: If the appointment is not scheduled
            ValidationException: If the new slot is malformed
            SlotUnavailableException: If the new slot overlaps another booking
        """
        current = await self.get_appointment(appointment_id)
        if not is_transition_allowed("update", current.status):
            raise InvalidStateException(
                f"Cannot update appointment in status {current.status.value}",
                appointment_id=str(appointment_id),
                current_status=current.status.value,
                operation="update",
            )

        update_values = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if not update_values:
            return current

        day = update_values.get("appointment_date", current.appointment_date)
        start = update_values.get("appointment_time", current.appointment_time)
        duration = update_values.get("duration_minutes", current.duration_minutes)

        scheduling = SchedulingService(self.db, clock=self.clock)
        slot_changed = (day, start, duration) != (
            current.appointment_date,
            current.appointment_time,
            current.duration_minutes,
        )
        if slot_changed:
            scheduling.validate_slot(day, start, duration)

        async with slot_guard(self.db, current.doctor_id, day):
            if slot_changed:
                await scheduling.ensure_slot_free(
                    current.doctor_id, day, start, duration, exclude_id=appointment_id
                )
            try:
                row = await self._transition(appointment_id, "update", update_values)
                await self.db.commit()
            except IntegrityError as e:
                if not is_overlap_violation(e):
                    raise
                raise SlotUnavailableException(
                    "Requested time slot overlaps an existing appointment",
                    doctor_id=str(current.doctor_id),
                    appointment_date=day.isoformat(),
                ) from e

        logger.info(
            "appointment_updated",
            appointment_id=str(appointment_id),
            fields=sorted(update_values),
        )
        return AppointmentResponse.model_validate(row)

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        cancelled_by: UUID,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Cancel a scheduled appointment and notify both parties.

        Raises:
            NotFoundException: If the appointment or cancelling user is missing
            InvalidStateException: If the appointment is not scheduled
        """
        if reason is not None and len(reason) > 500:
            raise ValidationException("Cancellation reason is too long", max_length=500)

        await UserService(self.db).require_user(cancelled_by)

        row = await self._transition(
            appointment_id,
            "cancel",
            {
                "status": AppointmentStatus.CANCELLED.value,
                "cancelled_by": cancelled_by,
                "cancelled_at": self.clock(),
                "cancellation_reason": reason,
            },
        )
        await self.db.commit()

        appointment = AppointmentResponse.model_validate(row)
        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            cancelled_by=str(cancelled_by),
        )

        await self._notify(appointment, NotificationCoordinator.booking_cancelled)
        return appointment

    async def complete_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Mark a scheduled or confirmed appointment as completed.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateException: If the appointment is terminal
        """
        row = await self._transition(
            appointment_id, "complete", {"status": AppointmentStatus.COMPLETED.value}
        )
        await self.db.commit()

        logger.info("appointment_completed", appointment_id=str(appointment_id))
        return AppointmentResponse.model_validate(row)

    async def mark_no_show(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Record that the patient did not attend a scheduled appointment.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateException: If the appointment is not scheduled
        """
        row = await self._transition(
            appointment_id, "mark_no_show", {"status": AppointmentStatus.NO_SHOW.value}
        )
        await self.db.commit()

        logger.info("appointment_marked_no_show", appointment_id=str(appointment_id))
        return AppointmentResponse.model_validate(row)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def send_reminders(self, day: date) -> int:
        """
        Dispatch a reminder for every scheduled appointment on ``day``.

        Returns:
            Number of appointments reminded
        """
        result = await self.db.execute(
            select(appointments)
            .where(
                appointments.c.appointment_date == day,
                appointments.c.status == AppointmentStatus.SCHEDULED.value,
            )
            .order_by(appointments.c.appointment_time)
        )
        due = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

        for appointment in due:
            await self._notify(appointment, NotificationCoordinator.appointment_reminder)

        logger.info("appointment_reminders_dispatched", date=day.isoformat(), count=len(due))
        return len(due)

    async def _notify(self, appointment: AppointmentResponse, event) -> None:
        if not self.dispatcher:
            return
        try:
            patient = await PatientService(self.db).get_participant(appointment.patient_id)
            doctor = await DoctorService(self.db).get_participant(appointment.doctor_id)
            self.dispatcher.dispatch(event(appointment, patient, doctor))
        except Exception as e:
            # Transition already committed
            logger.warning(
                "failed_to_send_appointment_notification",
                appointment_id=str(appointment.id),
                error=str(e),
            )
