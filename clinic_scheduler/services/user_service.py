"""User lookups against the identity tables."""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.exceptions import NotFoundException
from clinic_scheduler.models.users import users


class UserService:
    """Read access to user accounts owned by the identity service."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_user_by_id(self, user_id: UUID) -> dict | None:
        """Get user by ID."""
        result = await self.db.execute(select(users).where(users.c.id == user_id))
        user = result.mappings().first()
        return dict(user) if user else None

    async def require_user(self, user_id: UUID) -> dict:
        """Get user by ID or raise NotFoundException."""
        user = await self.get_user_by_id(user_id)
        if not user:
            raise NotFoundException(f"User not found with ID: {user_id}", user_id=str(user_id))
        return user

    async def exists_by_email(self, email: str) -> bool:
        """Check whether an account already uses this email."""
        result = await self.db.execute(select(exists().where(users.c.email == email.lower())))
        return bool(result.scalar())
