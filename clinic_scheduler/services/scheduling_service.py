"""Scheduling engine: conflict detection and booking."""

from collections.abc import Iterable, Mapping
from datetime import date, time
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.config import settings
from clinic_scheduler.core.exceptions import (
    SlotUnavailableException,
    ValidationException,
)
from clinic_scheduler.core.locks import slot_guard
from clinic_scheduler.core.timeutils import (
    Clock,
    minutes_since_midnight,
    seconds_since_midnight,
    utcnow,
)
from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.schemas.appointments import (
    OCCUPYING_STATUSES,
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatus,
    AvailableSlotsResponse,
)
from clinic_scheduler.services.doctor_service import DoctorService, ensure_doctor_bookable
from clinic_scheduler.services.notification_service import (
    NotificationCoordinator,
    NotificationDispatcher,
)
from clinic_scheduler.services.patient_service import PatientService

logger = structlog.get_logger(__name__)

# Name of the PostgreSQL exclusion constraint backing the no-overlap rule
NO_OVERLAP_CONSTRAINT = "appointments_no_overlap"

SECONDS_PER_DAY = 24 * 60 * 60


# ============================================================================
# Conflict detection
# ============================================================================


def intervals_overlap(start_a: float, end_a: float, start_b: float, end_b: float) -> bool:
    """Half-open ``[start, end)`` overlap test; touching endpoints do not overlap."""
    return start_a < end_b and end_a > start_b


def find_conflict(
    start: time,
    duration_minutes: int,
    existing: Iterable[Mapping[str, Any]],
) -> Mapping[str, Any] | None:
    """
    Return the first existing appointment overlapping the proposed slot.

    Args:
        start: Proposed start time
        duration_minutes: Proposed duration
        existing: Appointments on the same doctor and date, each with
            ``appointment_time`` and ``duration_minutes``

    Returns:
        The conflicting appointment, or None if the slot is free
    """
    new_start = seconds_since_midnight(start)
    new_end = new_start + duration_minutes * 60

    for appointment in existing:
        existing_start = seconds_since_midnight(appointment["appointment_time"])
        existing_end = existing_start + appointment["duration_minutes"] * 60
        if intervals_overlap(new_start, new_end, existing_start, existing_end):
            return appointment

    return None


def is_overlap_violation(error: IntegrityError) -> bool:
    return NO_OVERLAP_CONSTRAINT in str(error.orig)


class SchedulingService:
    """Service that books appointments without double-booking a doctor."""

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

    def validate_slot(self, day: date | None, start: time | None, duration_minutes: int) -> None:
        """
        Check the booking preconditions for a proposed slot.

        Raises:
            ValidationException: If the date or time is missing, the time is
                not on a whole minute, the date is in the past, the duration is
                out of range or the appointment would run past midnight
        """
        if day is None or start is None:
            raise ValidationException("Appointment date and time are required")

        if start.second or start.microsecond:
            raise ValidationException(
                "Appointment time must be on a whole minute",
                appointment_time=start.isoformat(),
            )

        today = self.clock().date()
        if day < today:
            raise ValidationException(
                "Cannot book appointments in the past",
                appointment_date=day.isoformat(),
                today=today.isoformat(),
            )

        if not (
            settings.min_appointment_duration
            <= duration_minutes
            <= settings.max_appointment_duration
        ):
            raise ValidationException(
                f"Duration must be between {settings.min_appointment_duration} "
                f"and {settings.max_appointment_duration} minutes",
                duration_minutes=duration_minutes,
            )

        if seconds_since_midnight(start) + duration_minutes * 60 > SECONDS_PER_DAY:
            raise ValidationException(
                "Appointment must end on the same day",
                appointment_time=start.isoformat(),
                duration_minutes=duration_minutes,
            )

    async def fetch_occupying(
        self,
        doctor_id: UUID,
        day: date,
        exclude_id: UUID | None = None,
    ) -> list[dict]:
        """Appointments holding a slot in the doctor's day, ordered by time."""
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.appointment_date == day,
            appointments.c.status.in_([status.value for status in OCCUPYING_STATUSES]),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        result = await self.db.execute(
            select(appointments).where(*conditions).order_by(appointments.c.appointment_time)
        )
        return [dict(row) for row in result.mappings().all()]

    async def ensure_slot_free(
        self,
        doctor_id: UUID,
        day: date,
        start: time,
        duration_minutes: int,
        exclude_id: UUID | None = None,
    ) -> None:
        """
        Raise if the slot overlaps an occupying appointment.

        Must be called inside :func:`slot_guard` for the same doctor and date.

        Raises:
            SlotUnavailableException: With the conflicting appointment id
        """
        existing = await self.fetch_occupying(doctor_id, day, exclude_id)
        conflict = find_conflict(start, duration_minutes, existing)
        if conflict is None:
            return

        logger.info(
            "appointment_conflict_detected",
            doctor_id=str(doctor_id),
            appointment_date=day.isoformat(),
            appointment_time=start.isoformat(),
            conflicting_appointment_id=str(conflict["id"]),
        )
        raise SlotUnavailableException(
            "Requested time slot overlaps an existing appointment",
            doctor_id=str(doctor_id),
            appointment_date=day.isoformat(),
            conflicting_appointment_id=str(conflict["id"]),
        )

    async def book(self, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book a new appointment.

        Args:
            data: Booking request

        Returns:
            Created appointment in ``scheduled`` status

        Raises:
            ValidationException: If the slot is malformed
            NotFoundException: If the patient or doctor does not exist
            DoctorNotApprovedException: If the doctor is not approved
            DoctorUnavailableException: If the doctor is not available
            SlotUnavailableException: If the slot overlaps another booking
        """
        duration = data.duration_minutes
        if duration is None:
            duration = settings.default_appointment_duration
        self.validate_slot(data.appointment_date, data.appointment_time, duration)

        await PatientService(self.db).get_patient(data.patient_id)
        doctor = await DoctorService(self.db).get_doctor_with_user(data.doctor_id)
        ensure_doctor_bookable(doctor)

        now = self.clock()
        async with slot_guard(self.db, data.doctor_id, data.appointment_date):
            await self.ensure_slot_free(
                data.doctor_id, data.appointment_date, data.appointment_time, duration
            )

            try:
                result = await self.db.execute(
                    insert(appointments)
                    .values(
                        patient_id=data.patient_id,
                        doctor_id=data.doctor_id,
                        appointment_date=data.appointment_date,
                        appointment_time=data.appointment_time,
                        duration_minutes=duration,
                        status=AppointmentStatus.SCHEDULED.value,
                        reason=data.reason,
                        created_at=now,
                        updated_at=now,
                    )
                    .returning(appointments)
                )
                row = result.mappings().one()
                await self.db.commit()
            except IntegrityError as e:
                if is_overlap_violation(e):
                    raise SlotUnavailableException(
                        "Requested time slot overlaps an existing appointment",
                        doctor_id=str(data.doctor_id),
                        appointment_date=data.appointment_date.isoformat(),
                    ) from e
                raise

        appointment = AppointmentResponse.model_validate(dict(row))
        logger.info(
            "appointment_booked",
            appointment_id=str(appointment.id),
            doctor_id=str(appointment.doctor_id),
            patient_id=str(appointment.patient_id),
            appointment_date=appointment.appointment_date.isoformat(),
            appointment_time=appointment.appointment_time.isoformat(),
        )

        await self._notify_booked(appointment)
        return appointment

    async def _notify_booked(self, appointment: AppointmentResponse) -> None:
        if not self.dispatcher:
            return
        try:
            patient = await PatientService(self.db).get_participant(appointment.patient_id)
            doctor = await DoctorService(self.db).get_participant(appointment.doctor_id)
            self.dispatcher.dispatch(
                NotificationCoordinator.booking_created(appointment, patient, doctor)
            )
        except Exception as e:
            # Booking already committed
            logger.warning(
                "failed_to_send_appointment_notification",
                appointment_id=str(appointment.id),
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_doctor_schedule(self, doctor_id: UUID, day: date) -> list[AppointmentResponse]:
        """
        All of a doctor's appointments on a date, in time order.

        Raises:
            NotFoundException: If the doctor does not exist
        """
        await DoctorService(self.db).get_doctor(doctor_id)

        result = await self.db.execute(
            select(appointments)
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.appointment_date == day,
            )
            .order_by(appointments.c.appointment_time)
        )
        return [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

    async def list_available_slots(
        self,
        doctor_id: UUID,
        day: date,
        duration_minutes: int | None = None,
    ) -> AvailableSlotsResponse:
        """
        Free start times for a bookable doctor within business hours.

        Candidates lie on the configured slot grid and must finish by the
        end of business hours. Start times already past are skipped today.

        Raises:
            NotFoundException: If the doctor does not exist
            DoctorNotApprovedException: If the doctor is not approved
            DoctorUnavailableException: If the doctor is not available
            ValidationException: If the date or duration is invalid
        """
        duration = duration_minutes
        if duration is None:
            duration = settings.default_appointment_duration
        self.validate_slot(day, settings.business_start_time, duration)

        doctor = await DoctorService(self.db).get_doctor_with_user(doctor_id)
        ensure_doctor_bookable(doctor)

        existing = await self.fetch_occupying(doctor_id, day)

        now = self.clock()
        earliest = minutes_since_midnight(settings.business_start_time)
        if day == now.date():
            earliest = max(earliest, minutes_since_midnight(now.time()) + 1)

        slots: list[time] = []
        opening = minutes_since_midnight(settings.business_start_time)
        closing = minutes_since_midnight(settings.business_end_time)
        for minute in range(opening, closing - duration + 1, settings.slot_interval_minutes):
            if minute < earliest:
                continue
            candidate = time(minute // 60, minute % 60)
            if find_conflict(candidate, duration, existing) is None:
                slots.append(candidate)

        return AvailableSlotsResponse(
            doctor_id=doctor_id,
            date=day,
            duration_minutes=duration,
            slots=slots,
        )
