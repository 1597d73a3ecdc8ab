"""Serialization of check-then-write sequences on shared scheduling state."""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger(__name__)

# One lock per key while anyone holds or waits on it
_local_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def slot_lock_key(doctor_id: UUID, day: date) -> str:
    """Lock key for a doctor's schedule on a given date."""
    return f"doctor-schedule:{doctor_id}:{day.isoformat()}"


def approval_lock_key(doctor_id: UUID) -> str:
    """Lock key for a doctor's application."""
    return f"doctor-approval:{doctor_id}"


def _local_lock(key: str) -> asyncio.Lock:
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    return lock


@asynccontextmanager
async def keyed_guard(db: AsyncSession, key: str) -> AsyncIterator[None]:
    """
    Hold exclusive access to the state named by ``key``.

    Coroutines in this process are serialized on an ``asyncio.Lock``. On
    PostgreSQL a transaction-scoped advisory lock is also taken so that other
    workers queue behind us until the session commits or rolls back. The
    caller must commit before leaving the block; if the block raises, the
    transaction is rolled back before the lock is released.
    """
    lock = _local_lock(key)

    async with lock:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
        logger.debug("guard_acquired", key=key)
        try:
            yield
        except BaseException:
            await db.rollback()
            raise


def slot_guard(db: AsyncSession, doctor_id: UUID, day: date):
    """
    Guard one doctor's schedule for one date.

    Args:
        db: Session whose transaction performs the read and the write
        doctor_id: Doctor whose schedule is being modified
        day: Date being modified
    """
    return keyed_guard(db, slot_lock_key(doctor_id, day))


def approval_guard(db: AsyncSession, doctor_id: UUID):
    """Guard a doctor's approval decision."""
    return keyed_guard(db, approval_lock_key(doctor_id))
