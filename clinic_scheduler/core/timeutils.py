"""Time helpers shared by the services."""

from collections.abc import Callable
from datetime import UTC, datetime, time

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current timezone-aware UTC time."""
    return datetime.now(UTC)


def minutes_since_midnight(value: time) -> int:
    """Convert a time-of-day to whole minutes since midnight."""
    return value.hour * 60 + value.minute


def seconds_since_midnight(value: time) -> float:
    """Convert a time-of-day to seconds since midnight, keeping sub-minute parts."""
    return value.hour * 3600 + value.minute * 60 + value.second + value.microsecond / 1_000_000
