"""Tests for doctor registration and the approval workflow."""

import asyncio
from datetime import date, time
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import select

from clinic_scheduler.core.exceptions import (
    ConflictException,
    DoctorNotApprovedException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from clinic_scheduler.models.users import users
from clinic_scheduler.schemas.appointments import AppointmentCreate, AppointmentStatus
from clinic_scheduler.schemas.doctors import ApprovalStatus, DoctorRegister
from clinic_scheduler.schemas.notifications import NotificationType
from clinic_scheduler.services.doctor_service import (
    DoctorService,
    is_doctor_bookable,
    validate_license_number,
)
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.services.user_service import UserService


async def fetch_user(db_session, user_id) -> dict:
    result = await db_session.execute(select(users).where(users.c.id == user_id))
    return dict(result.mappings().one())


@pytest.fixture
def service(db_session, clock, dispatcher) -> DoctorService:
    return DoctorService(db_session, dispatcher=dispatcher, clock=clock)


# ============================================================================
# Bookable predicate
# ============================================================================


@pytest.mark.parametrize(
    "approval_status,available,expected",
    [
        ("approved", True, True),
        ("approved", False, False),
        ("pending", True, False),
        ("rejected", True, False),
    ],
)
def test_is_doctor_bookable(approval_status, available, expected):
    doctor = {"approval_status": approval_status, "availability_status": available}
    assert is_doctor_bookable(doctor) is expected


@pytest.mark.asyncio
async def test_bookable_listing_matches_predicate(service, create_doctor):
    approved = await create_doctor()
    await create_doctor(approval_status="pending")
    await create_doctor(approval_status="rejected")
    await create_doctor(availability_status=False)
    await create_doctor(specialization="Dermatology")

    everyone = await service.list_bookable_doctors()
    cardiology = await service.list_bookable_doctors("cardiology")

    assert everyone.total == 2
    assert all(is_doctor_bookable(d.model_dump(mode="json")) for d in everyone.items)
    assert [d.id for d in cardiology.items] == [approved["id"]]


# ============================================================================
# Approve / reject
# ============================================================================


@pytest.mark.asyncio
async def test_approve_activates_account_and_notifies(
    service, db_session, dispatcher, notifier, create_doctor, admin_user
):
    pending = await create_doctor(approval_status="pending")

    approved = await service.approve_doctor(pending["id"], admin_user["id"])
    await dispatcher.drain()

    assert approved.approval_status == ApprovalStatus.APPROVED
    assert approved.approved_by == admin_user["id"]
    assert approved.approved_at is not None

    user = await fetch_user(db_session, pending["user_id"])
    assert user["is_active"] is True
    assert user["email_verified"] is True

    sent = notifier.for_user(pending["user_id"])
    assert [n.notification_type for n in sent] == [NotificationType.SYSTEM]


@pytest.mark.asyncio
async def test_reject_leaves_account_inactive(
    service, db_session, dispatcher, notifier, create_doctor, admin_user
):
    pending = await create_doctor(approval_status="pending")

    rejected = await service.reject_doctor(pending["id"], admin_user["id"])
    await dispatcher.drain()

    assert rejected.approval_status == ApprovalStatus.REJECTED
    assert rejected.approved_by == admin_user["id"]
    user = await fetch_user(db_session, pending["user_id"])
    assert user["is_active"] is False
    assert notifier.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("decided", ["approved", "rejected"])
@pytest.mark.parametrize("action", ["approve_doctor", "reject_doctor"])
async def test_decision_on_non_pending_doctor_fails(
    service, db_session, create_doctor, admin_user, decided, action
):
    doctor = await create_doctor(approval_status=decided)
    user_before = await fetch_user(db_session, doctor["user_id"])

    with pytest.raises(InvalidStateException) as exc_info:
        await getattr(service, action)(doctor["id"], admin_user["id"])

    assert exc_info.value.details["current_status"] == decided
    current = await service.get_doctor(doctor["id"])
    assert current.approval_status.value == decided
    assert await fetch_user(db_session, doctor["user_id"]) == user_before


@pytest.mark.asyncio
async def test_non_admin_cannot_approve(service, create_doctor, create_user):
    pending = await create_doctor(approval_status="pending")
    receptionist = await create_user(role="patient")

    with pytest.raises(ForbiddenException):
        await service.approve_doctor(pending["id"], receptionist["id"])

    current = await service.get_doctor(pending["id"])
    assert current.approval_status == ApprovalStatus.PENDING


@pytest.mark.asyncio
async def test_doctor_cannot_approve_another_doctor(service, create_doctor, doctor):
    pending = await create_doctor(approval_status="pending")

    with pytest.raises(ForbiddenException):
        await service.reject_doctor(pending["id"], doctor["user_id"])


@pytest.mark.asyncio
async def test_unknown_approver_or_doctor(service, create_doctor, admin_user):
    pending = await create_doctor(approval_status="pending")

    with pytest.raises(NotFoundException):
        await service.approve_doctor(pending["id"], uuid4())

    with pytest.raises(NotFoundException):
        await service.approve_doctor(uuid4(), admin_user["id"])


@pytest.mark.asyncio
async def test_decisions_invalidate_bookable_cache(db_session, clock, create_doctor, admin_user):
    cache = MagicMock()
    cache.get_json.return_value = None
    service = DoctorService(db_session, cache_manager=cache, clock=clock)
    pending = await create_doctor(approval_status="pending")

    await service.list_bookable_doctors()
    cache.set_json.assert_called_once()

    await service.approve_doctor(pending["id"], admin_user["id"])
    cache.delete_pattern.assert_called_once_with("doctor:bookable:*")


@pytest.mark.asyncio
async def test_bookable_listing_served_from_cache(db_session, clock):
    cached = {"total": 0, "items": []}
    cache = MagicMock()
    cache.get_json.return_value = cached
    service = DoctorService(db_session, cache_manager=cache, clock=clock)

    result = await service.list_bookable_doctors()

    assert result.total == 0
    cache.get_json.assert_called_once_with("doctor:bookable:all")


# ============================================================================
# Approval gates booking
# ============================================================================


@pytest.mark.asyncio
async def test_pending_doctor_becomes_bookable_after_approval(
    db_session, clock, service, create_doctor, patient, admin_user
):
    pending = await create_doctor(approval_status="pending")
    scheduling = SchedulingService(db_session, clock=clock)
    data = AppointmentCreate(
        patient_id=patient["id"],
        doctor_id=pending["id"],
        appointment_date=date(2025, 3, 10),
        appointment_time=time(9, 0),
        duration_minutes=30,
    )

    with pytest.raises(DoctorNotApprovedException):
        await scheduling.book(data)

    await service.approve_doctor(pending["id"], admin_user["id"])
    user = await fetch_user(db_session, pending["user_id"])
    assert user["is_active"] is True

    appointment = await scheduling.book(data)
    assert appointment.status == AppointmentStatus.SCHEDULED


# ============================================================================
# Registration
# ============================================================================


def registration(**overrides) -> DoctorRegister:
    data = {
        "email": "james.wilson@clinic.org",
        "full_name": "James Wilson",
        "specialization": "Oncology",
        "license_number": "NJ-ONC-204-5521",
        "years_experience": 12,
    }
    data.update(overrides)
    return DoctorRegister(**data)


@pytest.mark.parametrize(
    "value",
    ["", "nj-onc-204-5521", "NJ-ONC-2045-521", "NJONC2045521", "N1-ONC-204-5521"],
)
def test_invalid_license_numbers(value):
    with pytest.raises(ValidationException):
        validate_license_number(value)


def test_license_number_is_trimmed():
    assert validate_license_number("  NJ-ONC-204-5521 ") == "NJ-ONC-204-5521"


@pytest.mark.asyncio
async def test_register_creates_pending_doctor_with_inactive_account(service, db_session):
    doctor = await service.register_doctor(registration())

    assert doctor.approval_status == ApprovalStatus.PENDING
    assert doctor.availability_status is True
    user = await fetch_user(db_session, doctor.user_id)
    assert user["role"] == "doctor"
    assert user["is_active"] is False
    assert user["email_verified"] is False

    pending = await service.list_pending_doctors()
    assert [d.id for d in pending.items] == [doctor.id]
    counts = await service.count_by_approval_status()
    assert counts.pending == 1


@pytest.mark.asyncio
async def test_register_rejects_duplicates(service):
    await service.register_doctor(registration())

    with pytest.raises(ConflictException):
        await service.register_doctor(registration(license_number="NJ-ONC-204-9999"))

    with pytest.raises(ConflictException):
        await service.register_doctor(registration(email="other@clinic.org"))


@pytest.mark.asyncio
async def test_register_rejects_malformed_license(service):
    with pytest.raises(ValidationException):
        await service.register_doctor(registration(license_number="12345"))


@pytest.mark.asyncio
async def test_update_availability(service, doctor):
    result = await service.update_availability(doctor["id"], False)

    assert result.availability_status is False
    assert (await service.list_bookable_doctors()).total == 0


@pytest.mark.asyncio
async def test_registration_race_on_email_is_a_conflict(service, monkeypatch):
    await service.register_doctor(registration())

    async def email_looks_free(self, email):
        return False

    # Second request passed its duplicate check before the first committed
    monkeypatch.setattr(UserService, "exists_by_email", email_looks_free)

    with pytest.raises(ConflictException):
        await service.register_doctor(registration(license_number="NJ-ONC-204-9999"))

    assert (await service.count_by_approval_status()).pending == 1


@pytest.mark.asyncio
async def test_registration_race_on_license_is_a_conflict(service, monkeypatch):
    await service.register_doctor(registration())

    async def license_looks_free(self, license_number):
        return None

    monkeypatch.setattr(DoctorService, "find_by_license_number", license_looks_free)

    with pytest.raises(ConflictException):
        await service.register_doctor(registration(email="other@clinic.org"))

    assert (await service.count_by_approval_status()).pending == 1
    assert not await UserService(service.db).exists_by_email("other@clinic.org")


# ============================================================================
# Concurrency
# ============================================================================


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_admit_exactly_one(
    session_factory, clock, create_doctor, admin_user, create_user
):
    pending = await create_doctor(approval_status="pending")
    second_admin = await create_user(role="admin", full_name="Bob Admin")

    async def decide(action: str, actor: dict):
        async with session_factory() as session:
            service = DoctorService(session, clock=clock)
            return await getattr(service, action)(pending["id"], actor["id"])

    results = await asyncio.gather(
        decide("approve_doctor", admin_user),
        decide("reject_doctor", second_admin),
        return_exceptions=True,
    )

    decided = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, InvalidStateException)]
    assert len(decided) == 1
    assert len(rejected) == 1

    async with session_factory() as session:
        current = await DoctorService(session, clock=clock).get_doctor(pending["id"])
    assert current.approval_status == decided[0].approval_status
