"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_scheduler.dependencies import ClockDep, CurrentUser, DatabaseSession, Dispatcher
from clinic_scheduler.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
)
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.scheduling_service import SchedulingService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book appointment",
)
async def book_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    clock: ClockDep,
) -> AppointmentResponse:
    """
    Book an appointment with an approved, available doctor.

    Responds 409 when the doctor cannot be booked or the slot overlaps an
    existing appointment.
    """
    service = SchedulingService(db, dispatcher=dispatcher, clock=clock)
    return await service.book(data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    patient_id: UUID | None = Query(None),
    doctor_id: UUID | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        current_user: Authenticated user
        db: Database session
        status_filter: Filter by status
        patient_id: Filter by patient ID
        doctor_id: Filter by doctor ID
        from_date: Earliest appointment date
        to_date: Latest appointment date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        patient_id=patient_id,
        doctor_id=doctor_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    service = AppointmentService(db)
    return await service.get_appointment(appointment_id)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    clock: ClockDep,
) -> AppointmentResponse:
    """
    Reschedule or annotate a scheduled appointment.

    Args:
        appointment_id: Appointment ID
        data: Fields to change
        current_user: Authenticated user
        db: Database session
        clock: Current time source

    Returns:
        Updated appointment
    """
    service = AppointmentService(db, clock=clock)
    return await service.update_appointment(appointment_id, data)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    current_user: CurrentUser,
    db: DatabaseSession,
    dispatcher: Dispatcher,
    clock: ClockDep,
) -> AppointmentResponse:
    """Cancel a scheduled appointment on behalf of the authenticated user."""
    service = AppointmentService(db, dispatcher=dispatcher, clock=clock)
    return await service.cancel_appointment(appointment_id, current_user["id"], data.reason)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    clock: ClockDep,
) -> AppointmentResponse:
    """Mark an appointment as completed."""
    service = AppointmentService(db, clock=clock)
    return await service.complete_appointment(appointment_id)


@router.post(
    "/{appointment_id}/no-show",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Mark appointment as no-show",
)
async def mark_no_show(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    clock: ClockDep,
) -> AppointmentResponse:
    """Record that the patient did not attend."""
    service = AppointmentService(db, clock=clock)
    return await service.mark_no_show(appointment_id)
