"""Doctor registration and the approval workflow that gates booking."""

import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import ColumnElement, and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.config import settings
from clinic_scheduler.core.exceptions import (
    ConflictException,
    DoctorNotApprovedException,
    DoctorUnavailableException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from clinic_scheduler.core.locks import approval_guard
from clinic_scheduler.core.redis_client import CacheManager
from clinic_scheduler.core.timeutils import Clock, utcnow
from clinic_scheduler.models.doctors import doctors
from clinic_scheduler.models.users import users
from clinic_scheduler.schemas.doctors import (
    LICENSE_NUMBER_PATTERN,
    ApprovalStatus,
    ApprovalStatusCounts,
    DoctorListItem,
    DoctorListResponse,
    DoctorRegister,
    DoctorResponse,
)
from clinic_scheduler.schemas.notifications import Participant
from clinic_scheduler.schemas.users import UserRole
from clinic_scheduler.services.notification_service import (
    NotificationCoordinator,
    NotificationDispatcher,
)
from clinic_scheduler.services.user_service import UserService

logger = structlog.get_logger(__name__)

_LICENSE_RE = re.compile(LICENSE_NUMBER_PATTERN)


# ============================================================================
# Bookable predicate
# ============================================================================


def is_doctor_bookable(doctor: Mapping[str, Any]) -> bool:
    """A doctor can be booked iff approved and currently available."""
    return doctor["approval_status"] == ApprovalStatus.APPROVED.value and bool(
        doctor["availability_status"]
    )


def bookable_doctor_condition() -> ColumnElement[bool]:
    """SQL form of :func:`is_doctor_bookable` for listing queries."""
    return and_(
        doctors.c.approval_status == ApprovalStatus.APPROVED.value,
        doctors.c.availability_status.is_(True),
    )


def ensure_doctor_bookable(doctor: Mapping[str, Any]) -> None:
    """
    Reject a doctor that fails the bookable predicate.

    Raises:
        DoctorNotApprovedException: If the application is not approved
        DoctorUnavailableException: If the doctor is not taking appointments
    """
    if is_doctor_bookable(doctor):
        return

    doctor_id = str(doctor["id"])
    if doctor["approval_status"] != ApprovalStatus.APPROVED.value:
        raise DoctorNotApprovedException(
            f"Doctor {doctor_id} is not approved",
            doctor_id=doctor_id,
            approval_status=doctor["approval_status"],
        )
    raise DoctorUnavailableException(f"Doctor {doctor_id} is not available", doctor_id=doctor_id)


def validate_license_number(license_number: str) -> str:
    """
    Normalize and check a license number against ``LL-LLL-DDD-DDDD``.

    Raises:
        ValidationException: If the format is wrong
    """
    value = (license_number or "").strip()
    if not value:
        raise ValidationException("License number is required")
    if not _LICENSE_RE.match(value):
        raise ValidationException(
            "Invalid license number format. Expected: XX-XXX-XXX-XXXX",
            license_number=value,
        )
    return value


class DoctorService:
    """Service for doctor operations and approval decisions."""

    BOOKABLE_CACHE_PREFIX = "doctor:bookable"

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize service with database session and optional collaborators."""
        self.db = db
        self.cache = cache_manager
        self.dispatcher = dispatcher
        self.clock = clock

    @classmethod
    def _bookable_cache_key(cls, specialization: str | None) -> str:
        return f"{cls.BOOKABLE_CACHE_PREFIX}:{(specialization or 'all').lower()}"

    def _invalidate_bookable_cache(self) -> None:
        if self.cache:
            self.cache.delete_pattern(f"{self.BOOKABLE_CACHE_PREFIX}:*")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get_doctor_row(self, doctor_id: UUID) -> dict | None:
        result = await self.db.execute(select(doctors).where(doctors.c.id == doctor_id))
        doctor = result.mappings().first()
        return dict(doctor) if doctor else None

    async def get_doctor(self, doctor_id: UUID) -> DoctorResponse:
        """
        Get doctor by ID.

        Raises:
            NotFoundException: If the doctor does not exist
        """
        doctor = await self._get_doctor_row(doctor_id)
        if not doctor:
            raise NotFoundException(
                f"Doctor not found with ID: {doctor_id}", doctor_id=str(doctor_id)
            )
        return DoctorResponse.model_validate(doctor)

    async def get_doctor_with_user(self, doctor_id: UUID) -> dict:
        """
        Get doctor joined with the linked user's display fields.

        Raises:
            NotFoundException: If the doctor does not exist
        """
        query = (
            select(doctors, users.c.full_name, users.c.email, users.c.is_active)
            .join(users, doctors.c.user_id == users.c.id)
            .where(doctors.c.id == doctor_id)
        )
        result = await self.db.execute(query)
        doctor = result.mappings().first()

        if not doctor:
            raise NotFoundException(
                f"Doctor not found with ID: {doctor_id}", doctor_id=str(doctor_id)
            )

        return dict(doctor)

    async def get_participant(self, doctor_id: UUID) -> Participant:
        """Get the doctor as a notification recipient."""
        doctor = await self.get_doctor_with_user(doctor_id)
        return Participant(user_id=doctor["user_id"], full_name=doctor["full_name"])

    async def find_by_license_number(self, license_number: str) -> dict | None:
        """Get doctor by license number."""
        result = await self.db.execute(
            select(doctors).where(doctors.c.license_number == license_number)
        )
        doctor = result.mappings().first()
        return dict(doctor) if doctor else None

    async def _list(self, *conditions: ColumnElement[bool]) -> DoctorListResponse:
        query = (
            select(doctors, users.c.full_name, users.c.email)
            .join(users, doctors.c.user_id == users.c.id)
            .where(*conditions)
            .order_by(doctors.c.created_at.desc())
        )
        result = await self.db.execute(query)
        items = [DoctorListItem.model_validate(dict(row)) for row in result.mappings().all()]
        return DoctorListResponse(total=len(items), items=items)

    async def list_bookable_doctors(self, specialization: str | None = None) -> DoctorListResponse:
        """List doctors patients can book, optionally by specialization."""
        cache_key = self._bookable_cache_key(specialization)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return DoctorListResponse.model_validate(cached)

        conditions = [bookable_doctor_condition()]
        if specialization:
            conditions.append(func.lower(doctors.c.specialization) == specialization.lower())

        response = await self._list(*conditions)

        if self.cache:
            self.cache.set_json(
                cache_key, response.model_dump(mode="json"), ttl=settings.doctor_list_cache_ttl
            )

        return response

    async def list_pending_doctors(self) -> DoctorListResponse:
        """List doctor applications awaiting a decision."""
        return await self._list(doctors.c.approval_status == ApprovalStatus.PENDING.value)

    async def count_by_approval_status(self) -> ApprovalStatusCounts:
        """Count doctors in each approval status."""
        result = await self.db.execute(
            select(doctors.c.approval_status, func.count()).group_by(doctors.c.approval_status)
        )
        return ApprovalStatusCounts(**{status: count for status, count in result.all()})

    # ------------------------------------------------------------------
    # Registration and availability
    # ------------------------------------------------------------------

    async def register_doctor(self, data: DoctorRegister) -> DoctorResponse:
        """
        Submit a doctor application.

        Creates the linked user account inactive and unverified; it is
        activated when an admin approves the application.

        Raises:
            ValidationException: If the license number is malformed
            ConflictException: If the email or license number is taken
        """
        license_number = validate_license_number(data.license_number)
        email = str(data.email).lower()

        if await UserService(self.db).exists_by_email(email):
            raise ConflictException(f"Email already registered: {email}", email=email)

        if await self.find_by_license_number(license_number):
            raise ConflictException(
                f"License number already exists: {license_number}",
                license_number=license_number,
            )

        now = self.clock()
        try:
            doctor = await self._insert_application(data, email, license_number, now)
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException(
                "Email or license number already registered",
                email=email,
                license_number=license_number,
            ) from e

        logger.info("doctor_application_submitted", doctor_id=str(doctor["id"]))
        return DoctorResponse.model_validate(doctor)

    async def _insert_application(
        self,
        data: DoctorRegister,
        email: str,
        license_number: str,
        now: datetime,
    ) -> dict:
        user_result = await self.db.execute(
            insert(users)
            .values(
                email=email,
                full_name=data.full_name,
                phone=data.phone,
                role=UserRole.DOCTOR.value,
                is_active=False,
                email_verified=False,
                created_at=now,
                updated_at=now,
            )
            .returning(users.c.id)
        )
        user_id = user_result.scalar_one()

        doctor_result = await self.db.execute(
            insert(doctors)
            .values(
                user_id=user_id,
                specialization=data.specialization,
                license_number=license_number,
                years_experience=data.years_experience,
                qualification=data.qualification,
                consultation_fee=data.consultation_fee,
                bio=data.bio,
                availability_status=True,
                approval_status=ApprovalStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            .returning(doctors)
        )
        doctor = dict(doctor_result.mappings().one())
        await self.db.commit()
        return doctor

    async def update_availability(self, doctor_id: UUID, available: bool) -> DoctorResponse:
        """Toggle whether a doctor takes new appointments."""
        result = await self.db.execute(
            update(doctors)
            .where(doctors.c.id == doctor_id)
            .values(availability_status=available, updated_at=self.clock())
            .returning(doctors)
        )
        doctor = result.mappings().first()
        if not doctor:
            await self.db.rollback()
            raise NotFoundException(
                f"Doctor not found with ID: {doctor_id}", doctor_id=str(doctor_id)
            )

        await self.db.commit()
        self._invalidate_bookable_cache()

        logger.info("doctor_availability_updated", doctor_id=str(doctor_id), available=available)
        return DoctorResponse.model_validate(dict(doctor))

    # ------------------------------------------------------------------
    # Approval workflow
    # ------------------------------------------------------------------

    async def _require_admin(self, actor_id: UUID, action: str) -> dict:
        actor = await UserService(self.db).require_user(actor_id)
        if actor["role"] != UserRole.ADMIN.value:
            raise ForbiddenException(
                f"Only admins can {action} doctor applications",
                user_id=str(actor_id),
                role=actor["role"],
            )
        return actor

    async def _decide(
        self,
        doctor_id: UUID,
        actor_id: UUID,
        target: ApprovalStatus,
        action: str,
    ) -> dict:
        """
        Move a pending doctor to ``target`` with compare-and-set semantics.

        The UPDATE only matches while the row is still pending, so two admins
        racing on the same application cannot both succeed. Callers hold
        :func:`approval_guard` and commit.
        """
        doctor = await self._get_doctor_row(doctor_id)
        if not doctor:
            raise NotFoundException(
                f"Doctor not found with ID: {doctor_id}", doctor_id=str(doctor_id)
            )

        await self._require_admin(actor_id, action)

        now = self.clock()
        result = await self.db.execute(
            update(doctors)
            .where(
                doctors.c.id == doctor_id,
                doctors.c.approval_status == ApprovalStatus.PENDING.value,
            )
            .values(
                approval_status=target.value,
                approved_by=actor_id,
                approved_at=now,
                updated_at=now,
            )
            .returning(doctors)
        )
        decided = result.mappings().first()

        if not decided:
            await self.db.rollback()
            current = await self._get_doctor_row(doctor_id)
            current_status = current["approval_status"] if current else None
            raise InvalidStateException(
                f"Cannot {action} doctor {doctor_id}: application is {current_status}",
                doctor_id=str(doctor_id),
                current_status=current_status,
            )

        return dict(decided)

    async def approve_doctor(self, doctor_id: UUID, approver_id: UUID) -> DoctorResponse:
        """
        Approve a pending doctor application.

        The doctor's user account is activated and verified in the same
        transaction. A "doctor approved" notification is dispatched after
        commit.

        Raises:
            NotFoundException: If the doctor or approver does not exist
            ForbiddenException: If the approver is not an admin
            InvalidStateException: If the doctor is not pending
        """
        logger.info("approving_doctor", doctor_id=str(doctor_id), approver_id=str(approver_id))

        async with approval_guard(self.db, doctor_id):
            doctor = await self._decide(doctor_id, approver_id, ApprovalStatus.APPROVED, "approve")
            await self.db.execute(
                update(users)
                .where(users.c.id == doctor["user_id"])
                .values(is_active=True, email_verified=True, updated_at=doctor["approved_at"])
            )
            await self.db.commit()
        self._invalidate_bookable_cache()

        logger.info("doctor_approved", doctor_id=str(doctor_id))
        await self._notify_approved(doctor_id)

        return DoctorResponse.model_validate(doctor)

    async def reject_doctor(self, doctor_id: UUID, rejecter_id: UUID) -> DoctorResponse:
        """
        Reject a pending doctor application.

        The linked user account is left untouched.

        Raises:
            NotFoundException: If the doctor or rejecter does not exist
            ForbiddenException: If the rejecter is not an admin
            InvalidStateException: If the doctor is not pending
        """
        logger.info("rejecting_doctor", doctor_id=str(doctor_id), rejecter_id=str(rejecter_id))

        async with approval_guard(self.db, doctor_id):
            doctor = await self._decide(doctor_id, rejecter_id, ApprovalStatus.REJECTED, "reject")
            await self.db.commit()
        self._invalidate_bookable_cache()

        logger.info("doctor_rejected", doctor_id=str(doctor_id))
        return DoctorResponse.model_validate(doctor)

    async def _notify_approved(self, doctor_id: UUID) -> None:
        if not self.dispatcher:
            return
        try:
            participant = await self.get_participant(doctor_id)
            self.dispatcher.dispatch(NotificationCoordinator.doctor_approved(participant))
        except Exception as e:
            # Approval already committed
            logger.warning(
                "failed_to_send_approval_notification", doctor_id=str(doctor_id), error=str(e)
            )
