"""Doctor endpoints: applications, availability and schedules."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from clinic_scheduler.core.exceptions import ForbiddenException
from clinic_scheduler.dependencies import (
    CacheManagerDep,
    ClockDep,
    CurrentUser,
    DatabaseSession,
    Dispatcher,
)
from clinic_scheduler.schemas.appointments import AppointmentResponse, AvailableSlotsResponse
from clinic_scheduler.schemas.doctors import (
    AvailabilityUpdate,
    DoctorListResponse,
    DoctorRegister,
    DoctorResponse,
)
from clinic_scheduler.schemas.users import UserRole
from clinic_scheduler.services.doctor_service import DoctorService
from clinic_scheduler.services.scheduling_service import SchedulingService

router = APIRouter()


def get_doctor_service(
    db: DatabaseSession,
    cache_manager: CacheManagerDep,
    dispatcher: Dispatcher,
    clock: ClockDep,
) -> DoctorService:
    """Get doctor service instance."""
    return DoctorService(db, cache_manager=cache_manager, dispatcher=dispatcher, clock=clock)


# ============================================================================
# Applications
# ============================================================================


@router.post("/register", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def register_doctor(
    data: DoctorRegister,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """
    Apply to join the clinic as a doctor.

    - **email**: Account email (unique)
    - **full_name**: Doctor's name
    - **specialization**: Primary medical specialization
    - **license_number**: Medical license, format `XX-XXX-XXX-XXXX` (unique)

    The account stays inactive and the doctor cannot be booked until an
    admin approves the application.
    """
    return await doctor_service.register_doctor(data)


# ============================================================================
# Listing and lookup
# ============================================================================


@router.get("/bookable", response_model=DoctorListResponse)
async def list_bookable_doctors(
    specialization: str | None = Query(None, description="Filter by specialization"),
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """List approved doctors currently taking appointments."""
    return await doctor_service.list_bookable_doctors(specialization)


@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(
    doctor_id: UUID,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """Get a doctor by ID."""
    return await doctor_service.get_doctor(doctor_id)


@router.patch("/{doctor_id}/availability", response_model=DoctorResponse)
async def update_availability(
    doctor_id: UUID,
    data: AvailabilityUpdate,
    current_user: CurrentUser,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """
    Start or stop taking new appointments.

    Allowed for the doctor themself and for admins.
    """
    doctor = await doctor_service.get_doctor(doctor_id)
    if current_user["role"] != UserRole.ADMIN.value and doctor.user_id != current_user["id"]:
        raise ForbiddenException(
            "Only the doctor or an admin can change availability",
            doctor_id=str(doctor_id),
        )
    return await doctor_service.update_availability(doctor_id, data.available)


# ============================================================================
# Schedule
# ============================================================================


@router.get("/{doctor_id}/schedule", response_model=list[AppointmentResponse])
async def get_doctor_schedule(
    doctor_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    day: date = Query(..., alias="date", description="Schedule date"),
):
    """All of a doctor's appointments on a date, in time order."""
    return await SchedulingService(db).get_doctor_schedule(doctor_id, day)


@router.get("/{doctor_id}/slots", response_model=AvailableSlotsResponse)
async def list_available_slots(
    doctor_id: UUID,
    db: DatabaseSession,
    clock: ClockDep,
    day: date = Query(..., alias="date", description="Requested date"),
    duration_minutes: int | None = Query(None, ge=15, le=120),
):
    """Free start times within business hours for a bookable doctor."""
    service = SchedulingService(db, clock=clock)
    return await service.list_available_slots(doctor_id, day, duration_minutes)
