"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.redis_client import CacheManager, get_redis_client
from clinic_scheduler.core.security import decode_access_token
from clinic_scheduler.core.timeutils import Clock, utcnow
from clinic_scheduler.database import AsyncSessionLocal, get_db
from clinic_scheduler.schemas.users import UserRole
from clinic_scheduler.services.notification_service import (
    DatabaseNotificationSink,
    NotificationDispatcher,
)
from clinic_scheduler.services.user_service import UserService

# Security
security = HTTPBearer()

# Process-wide dispatcher so shutdown can drain in-flight deliveries
_dispatcher: NotificationDispatcher | None = None


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    token = credentials.credentials
    payload = decode_access_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user from database.

    Args:
        user_id: User ID from JWT token
        db: Database session

    Returns:
        User data from database

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService(db).get_user_by_id(user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def require_admin(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """
    Dependency to ensure current user has admin role.

    Raises:
        HTTPException: If user is not admin
    """
    if current_user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_cache_manager() -> CacheManager | None:
    """Cache manager backed by the shared Redis client."""
    return CacheManager(get_redis_client())


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get or create the process-wide notification dispatcher."""
    global _dispatcher

    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(DatabaseNotificationSink(AsyncSessionLocal))

    return _dispatcher


async def drain_notification_dispatcher() -> None:
    """Wait for in-flight notification deliveries before shutdown."""
    if _dispatcher is not None:
        await _dispatcher.drain()


def get_clock() -> Clock:
    """Clock used to stamp transitions and reject past dates."""
    return utcnow


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
AdminUser = Annotated[dict, Depends(require_admin)]
CacheManagerDep = Annotated[CacheManager | None, Depends(get_cache_manager)]
Dispatcher = Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)]
ClockDep = Annotated[Clock, Depends(get_clock)]
