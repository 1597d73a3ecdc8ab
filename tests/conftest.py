import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, date, datetime, timedelta
from uuid import UUID, uuid4

# Settings are read at import time; tests never need a real server or Redis
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from clinic_scheduler.core.security import create_access_token
from clinic_scheduler.database import get_db
from clinic_scheduler.dependencies import (
    get_cache_manager,
    get_clock,
    get_notification_dispatcher,
)
from clinic_scheduler.main import app
from clinic_scheduler.models import doctors, metadata, patients, users
from clinic_scheduler.schemas.notifications import NotificationRequest, NotificationType
from clinic_scheduler.services.notification_service import NotificationDispatcher

# Fixed "now" so that the documented dates (March 2025) are in the future
FIXED_NOW = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
CLINIC_DAY = date(2025, 3, 10)


class RecordingNotifier:
    """Notifier that remembers every delivery instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[NotificationRequest] = []

    async def __call__(
        self,
        user_id: UUID,
        notification_type: NotificationType,
        title: str,
        body: str,
    ) -> None:
        self.sent.append(
            NotificationRequest(
                recipient_user_id=user_id,
                notification_type=notification_type,
                title=title,
                body=body,
            )
        )

    def for_user(self, user_id: UUID) -> list[NotificationRequest]:
        return [n for n in self.sent if n.recipient_user_id == user_id]


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Engine over a throwaway SQLite file with the full schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier: RecordingNotifier) -> NotificationDispatcher:
    return NotificationDispatcher(notifier)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    dispatcher: NotificationDispatcher,
    clock: Callable[[], datetime],
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_manager] = lambda: None
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Data factories
# ============================================================================


@pytest.fixture
def create_user(db_session: AsyncSession) -> Callable[..., Awaitable[dict]]:
    """Insert a user row and return it as a dict."""

    async def _create(
        role: str = "patient",
        full_name: str = "Test User",
        is_active: bool = True,
        email_verified: bool = True,
    ) -> dict:
        user = {
            "id": uuid4(),
            "email": f"{role}-{uuid4().hex[:8]}@clinic.org",
            "full_name": full_name,
            "phone": "+15550100",
            "role": role,
            "is_active": is_active,
            "email_verified": email_verified,
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        await db_session.execute(insert(users).values(**user))
        await db_session.commit()
        return user

    return _create


@pytest.fixture
def create_doctor(
    db_session: AsyncSession,
    create_user: Callable[..., Awaitable[dict]],
) -> Callable[..., Awaitable[dict]]:
    """Insert a doctor (and its user) and return the doctor row as a dict."""
    counter = iter(range(1000, 10000))

    async def _create(
        approval_status: str = "approved",
        availability_status: bool = True,
        specialization: str = "Cardiology",
        full_name: str = "Gregory House",
    ) -> dict:
        user = await create_user(
            role="doctor",
            full_name=full_name,
            is_active=approval_status == "approved",
            email_verified=approval_status == "approved",
        )
        doctor = {
            "id": uuid4(),
            "user_id": user["id"],
            "specialization": specialization,
            "license_number": f"NY-MED-123-{next(counter)}",
            "availability_status": availability_status,
            "approval_status": approval_status,
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        await db_session.execute(insert(doctors).values(**doctor))
        await db_session.commit()
        return doctor

    return _create


@pytest.fixture
def create_patient(
    db_session: AsyncSession,
    create_user: Callable[..., Awaitable[dict]],
) -> Callable[..., Awaitable[dict]]:
    """Insert a patient (and its user) and return the patient row as a dict."""

    async def _create(full_name: str = "Jane Patient") -> dict:
        user = await create_user(role="patient", full_name=full_name)
        patient = {
            "id": uuid4(),
            "user_id": user["id"],
            "date_of_birth": date(1990, 5, 17),
            "gender": "female",
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        await db_session.execute(insert(patients).values(**patient))
        await db_session.commit()
        return patient

    return _create


@pytest_asyncio.fixture
async def admin_user(create_user) -> dict:
    return await create_user(role="admin", full_name="Alice Admin")


@pytest_asyncio.fixture
async def doctor(create_doctor) -> dict:
    """An approved, available doctor."""
    return await create_doctor()


@pytest_asyncio.fixture
async def patient(create_patient) -> dict:
    return await create_patient()


def make_auth_headers(user_id: UUID) -> dict:
    token = create_access_token(data={"sub": str(user_id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_for() -> Callable[[UUID], dict]:
    """Build bearer headers for acting as a given user."""
    return make_auth_headers


@pytest.fixture
def admin_headers(admin_user: dict) -> dict:
    return make_auth_headers(admin_user["id"])


@pytest.fixture
def patient_headers(patient: dict) -> dict:
    return make_auth_headers(patient["user_id"])
