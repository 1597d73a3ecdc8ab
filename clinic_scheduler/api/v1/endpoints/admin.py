"""Admin-only endpoints for doctor applications."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from clinic_scheduler.api.v1.endpoints.doctors import get_doctor_service
from clinic_scheduler.dependencies import AdminUser, CurrentUser, DatabaseSession
from clinic_scheduler.schemas.doctors import (
    ApprovalStatusCounts,
    DoctorListResponse,
    DoctorResponse,
)
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.doctor_service import DoctorService

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/doctors/pending",
    response_model=DoctorListResponse,
    summary="List pending doctor applications (admin only)",
)
async def list_pending_doctors(
    admin_user: AdminUser,
    doctor_service: DoctorService = Depends(get_doctor_service),
) -> DoctorListResponse:
    """Doctor applications awaiting a decision, newest first."""
    return await doctor_service.list_pending_doctors()


@router.post(
    "/doctors/{doctor_id}/approve",
    response_model=DoctorResponse,
    status_code=status.HTTP_200_OK,
    summary="Approve a doctor application",
)
async def approve_doctor(
    doctor_id: UUID,
    current_user: CurrentUser,
    doctor_service: DoctorService = Depends(get_doctor_service),
) -> DoctorResponse:
    """
    Approve a pending doctor and activate their account.

    The caller's role is checked by the approval workflow itself, so a
    non-admin gets 403 and an already decided application gets 409.
    """
    return await doctor_service.approve_doctor(doctor_id, current_user["id"])


@router.post(
    "/doctors/{doctor_id}/reject",
    response_model=DoctorResponse,
    status_code=status.HTTP_200_OK,
    summary="Reject a doctor application",
)
async def reject_doctor(
    doctor_id: UUID,
    current_user: CurrentUser,
    doctor_service: DoctorService = Depends(get_doctor_service),
) -> DoctorResponse:
    """Reject a pending doctor; the account stays inactive."""
    return await doctor_service.reject_doctor(doctor_id, current_user["id"])


@router.get(
    "/stats",
    summary="Doctor and appointment counts (admin only)",
)
async def get_stats(
    admin_user: AdminUser,
    db: DatabaseSession,
    doctor_service: DoctorService = Depends(get_doctor_service),
) -> dict:
    """Counts of doctors by approval status and appointments by status."""
    doctors: ApprovalStatusCounts = await doctor_service.count_by_approval_status()
    appointments = await AppointmentService(db).count_by_status()
    return {"doctors": doctors.model_dump(), "appointments": appointments}
