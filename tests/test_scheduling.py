"""Tests for conflict detection and booking."""

import asyncio
from datetime import date, time

import pytest

from clinic_scheduler.core.exceptions import (
    DoctorNotApprovedException,
    DoctorUnavailableException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from clinic_scheduler.schemas.appointments import AppointmentCreate, AppointmentStatus
from clinic_scheduler.schemas.notifications import NotificationType
from clinic_scheduler.services.scheduling_service import (
    SchedulingService,
    find_conflict,
    intervals_overlap,
)

CLINIC_DAY = date(2025, 3, 10)


def booking(patient: dict, doctor: dict, at: time, duration: int | None = 30) -> AppointmentCreate:
    return AppointmentCreate(
        patient_id=patient["id"],
        doctor_id=doctor["id"],
        appointment_date=CLINIC_DAY,
        appointment_time=at,
        duration_minutes=duration,
        reason="Routine checkup",
    )


# ============================================================================
# Pure overlap test
# ============================================================================


def test_intervals_overlap_is_half_open():
    assert intervals_overlap(540, 570, 555, 585)
    assert intervals_overlap(540, 600, 550, 560)
    assert not intervals_overlap(540, 570, 570, 600)
    assert not intervals_overlap(570, 600, 540, 570)


def test_find_conflict_returns_the_overlapping_appointment():
    existing = [
        {"id": "a", "appointment_time": time(8, 0), "duration_minutes": 30},
        {"id": "b", "appointment_time": time(9, 0), "duration_minutes": 30},
    ]

    assert find_conflict(time(9, 15), 30, existing)["id"] == "b"
    assert find_conflict(time(8, 30), 30, existing) is None
    assert find_conflict(time(9, 30), 30, existing) is None
    assert find_conflict(time(7, 45), 120, existing)["id"] == "a"


def test_find_conflict_on_empty_day():
    assert find_conflict(time(10, 0), 120, []) is None


# ============================================================================
# Booking
# ============================================================================


@pytest.mark.asyncio
async def test_book_into_free_day(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)

    appointment = await service.book(booking(patient, doctor, time(9, 0)))

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.appointment_date == CLINIC_DAY
    assert appointment.appointment_time == time(9, 0)
    assert appointment.duration_minutes == 30


@pytest.mark.asyncio
async def test_overlapping_booking_is_rejected(db_session, clock, doctor, patient, create_patient):
    service = SchedulingService(db_session, clock=clock)
    first = await service.book(booking(patient, doctor, time(9, 0)))
    other = await create_patient(full_name="John Other")

    with pytest.raises(SlotUnavailableException) as exc_info:
        await service.book(booking(other, doctor, time(9, 15)))

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["conflicting_appointment_id"] == str(first.id)


@pytest.mark.asyncio
async def test_touching_booking_is_accepted(db_session, clock, doctor, patient, create_patient):
    service = SchedulingService(db_session, clock=clock)
    await service.book(booking(patient, doctor, time(9, 0)))
    other = await create_patient(full_name="John Other")

    appointment = await service.book(booking(other, doctor, time(9, 30)))

    assert appointment.status == AppointmentStatus.SCHEDULED


def test_find_conflict_keeps_seconds():
    existing = [{"id": "a", "appointment_time": time(9, 30), "duration_minutes": 30}]

    assert find_conflict(time(9, 0, 30), 30, existing)["id"] == "a"
    assert find_conflict(time(10, 0, 0), 30, existing) is None


@pytest.mark.asyncio
async def test_sub_minute_start_is_rejected(db_session, clock, doctor, patient, create_patient):
    service = SchedulingService(db_session, clock=clock)
    await service.book(booking(patient, doctor, time(9, 30)))
    other = await create_patient(full_name="John Other")

    with pytest.raises(ValidationException):
        await service.book(booking(other, doctor, time(9, 0, 30)))

    schedule = await service.get_doctor_schedule(doctor["id"], CLINIC_DAY)
    assert [a.appointment_time for a in schedule] == [time(9, 30)]


@pytest.mark.asyncio
async def test_other_doctor_same_time_is_accepted(db_session, clock, doctor, patient, create_doctor):
    service = SchedulingService(db_session, clock=clock)
    await service.book(booking(patient, doctor, time(9, 0)))
    second_doctor = await create_doctor(full_name="Lisa Cuddy")

    appointment = await service.book(booking(patient, second_doctor, time(9, 0)))

    assert appointment.doctor_id == second_doctor["id"]


@pytest.mark.asyncio
async def test_cancelled_appointment_frees_its_slot(
    db_session, clock, doctor, patient, create_patient
):
    from clinic_scheduler.services.appointment_service import AppointmentService

    service = SchedulingService(db_session, clock=clock)
    first = await service.book(booking(patient, doctor, time(9, 0)))
    await AppointmentService(db_session, clock=clock).cancel_appointment(
        first.id, patient["user_id"], "Feeling better"
    )
    other = await create_patient(full_name="John Other")

    appointment = await service.book(booking(other, doctor, time(9, 0)))

    assert appointment.status == AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_default_duration_is_applied(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)

    appointment = await service.book(booking(patient, doctor, time(11, 0), duration=None))

    assert appointment.duration_minutes == 30


@pytest.mark.asyncio
async def test_booking_pending_doctor_fails_even_with_free_slot(
    db_session, clock, create_doctor, patient
):
    pending = await create_doctor(approval_status="pending")
    service = SchedulingService(db_session, clock=clock)

    with pytest.raises(DoctorNotApprovedException):
        await service.book(booking(patient, pending, time(9, 0)))


@pytest.mark.asyncio
async def test_booking_rejected_doctor_fails(db_session, clock, create_doctor, patient):
    rejected = await create_doctor(approval_status="rejected")
    service = SchedulingService(db_session, clock=clock)

    with pytest.raises(DoctorNotApprovedException):
        await service.book(booking(patient, rejected, time(9, 0)))


@pytest.mark.asyncio
async def test_booking_unavailable_doctor_fails(db_session, clock, create_doctor, patient):
    away = await create_doctor(availability_status=False)
    service = SchedulingService(db_session, clock=clock)

    with pytest.raises(DoctorUnavailableException):
        await service.book(booking(patient, away, time(9, 0)))


@pytest.mark.asyncio
async def test_booking_unknown_patient_or_doctor(db_session, clock, doctor, patient):
    from uuid import uuid4

    service = SchedulingService(db_session, clock=clock)

    with pytest.raises(NotFoundException):
        await service.book(booking({"id": uuid4()}, doctor, time(9, 0)))

    with pytest.raises(NotFoundException):
        await service.book(booking(patient, {"id": uuid4()}, time(9, 0)))


# ============================================================================
# Preconditions
# ============================================================================


@pytest.mark.asyncio
async def test_booking_in_the_past_is_rejected(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)
    data = booking(patient, doctor, time(9, 0)).model_copy(
        update={"appointment_date": date(2025, 2, 28)}
    )

    with pytest.raises(ValidationException):
        await service.book(data)


@pytest.mark.asyncio
async def test_booking_today_is_allowed(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)
    data = booking(patient, doctor, time(15, 0)).model_copy(
        update={"appointment_date": clock().date()}
    )

    appointment = await service.book(data)

    assert appointment.appointment_date == clock().date()


@pytest.mark.parametrize("duration", [10, 121])
def test_out_of_range_duration_is_rejected(clock, duration):
    service = SchedulingService(db=None, clock=clock)

    with pytest.raises(ValidationException):
        service.validate_slot(CLINIC_DAY, time(9, 0), duration)


def test_appointment_must_end_same_day(clock):
    service = SchedulingService(db=None, clock=clock)

    with pytest.raises(ValidationException):
        service.validate_slot(CLINIC_DAY, time(23, 45), 30)

    service.validate_slot(CLINIC_DAY, time(23, 30), 30)

    with pytest.raises(ValidationException):
        service.validate_slot(CLINIC_DAY, time(23, 45, 30), 15)


@pytest.mark.asyncio
async def test_zero_duration_is_rejected(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)
    data = booking(patient, doctor, time(9, 0)).model_copy(update={"duration_minutes": 0})

    with pytest.raises(ValidationException):
        await service.book(data)


def test_missing_date_or_time_is_rejected(clock):
    service = SchedulingService(db=None, clock=clock)

    with pytest.raises(ValidationException):
        service.validate_slot(None, time(9, 0), 30)

    with pytest.raises(ValidationException):
        service.validate_slot(CLINIC_DAY, None, 30)


# ============================================================================
# Concurrency
# ============================================================================


@pytest.mark.asyncio
async def test_concurrent_overlapping_bookings_admit_exactly_one(
    session_factory, clock, doctor, patient, create_patient
):
    other = await create_patient(full_name="John Other")

    async def attempt(who: dict, at: time):
        async with session_factory() as session:
            return await SchedulingService(session, clock=clock).book(booking(who, doctor, at))

    results = await asyncio.gather(
        attempt(patient, time(10, 0)),
        attempt(other, time(10, 15)),
        return_exceptions=True,
    )

    booked = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, SlotUnavailableException)]
    assert len(booked) == 1
    assert len(rejected) == 1


@pytest.mark.asyncio
async def test_concurrent_disjoint_bookings_both_succeed(
    session_factory, clock, doctor, patient, create_patient
):
    other = await create_patient(full_name="John Other")

    async def attempt(who: dict, at: time):
        async with session_factory() as session:
            return await SchedulingService(session, clock=clock).book(booking(who, doctor, at))

    results = await asyncio.gather(
        attempt(patient, time(10, 0)),
        attempt(other, time(10, 30)),
    )

    assert {r.appointment_time for r in results} == {time(10, 0), time(10, 30)}


# ============================================================================
# Notifications and reads
# ============================================================================


@pytest.mark.asyncio
async def test_booking_notifies_doctor_and_patient(
    db_session, clock, dispatcher, notifier, doctor, patient
):
    service = SchedulingService(db_session, dispatcher=dispatcher, clock=clock)

    await service.book(booking(patient, doctor, time(9, 0)))
    await dispatcher.drain()

    assert [n.notification_type for n in notifier.for_user(doctor["user_id"])] == [
        NotificationType.NEW_APPOINTMENT
    ]
    assert [n.notification_type for n in notifier.for_user(patient["user_id"])] == [
        NotificationType.APPOINTMENT_CONFIRMATION
    ]


@pytest.mark.asyncio
async def test_rejected_booking_sends_nothing(
    db_session, clock, dispatcher, notifier, create_doctor, patient
):
    pending = await create_doctor(approval_status="pending")
    service = SchedulingService(db_session, dispatcher=dispatcher, clock=clock)

    with pytest.raises(DoctorNotApprovedException):
        await service.book(booking(patient, pending, time(9, 0)))
    await dispatcher.drain()

    assert notifier.sent == []


@pytest.mark.asyncio
async def test_doctor_schedule_is_time_ordered(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)
    await service.book(booking(patient, doctor, time(14, 0)))
    await service.book(booking(patient, doctor, time(9, 0)))

    schedule = await service.get_doctor_schedule(doctor["id"], CLINIC_DAY)

    assert [a.appointment_time for a in schedule] == [time(9, 0), time(14, 0)]


@pytest.mark.asyncio
async def test_available_slots_skip_booked_time(db_session, clock, doctor, patient):
    service = SchedulingService(db_session, clock=clock)
    await service.book(booking(patient, doctor, time(9, 0)))

    result = await service.list_available_slots(doctor["id"], CLINIC_DAY, 30)

    assert result.slots[0] == time(8, 0)
    assert time(8, 30) in result.slots
    assert time(8, 45) not in result.slots
    assert time(9, 0) not in result.slots
    assert time(9, 15) not in result.slots
    assert time(9, 30) in result.slots
    assert result.slots[-1] == time(17, 30)


@pytest.mark.asyncio
async def test_available_slots_today_start_after_now(db_session, clock, doctor):
    service = SchedulingService(db_session, clock=clock)

    result = await service.list_available_slots(doctor["id"], clock().date(), 30)

    # FIXED_NOW is 09:00
    assert result.slots[0] == time(9, 15)
