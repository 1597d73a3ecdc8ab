#!/usr/bin/env python3
"""
Send reminders for the scheduled appointments on a given day.

Usage:
    python scripts/send_reminders.py              # tomorrow
    python scripts/send_reminders.py --date 2026-11-02

Environment Variables:
    DATABASE_URL: Database to read appointments from and write notifications to
"""

import argparse
import asyncio
import sys
from datetime import date, timedelta

import dotenv

dotenv.load_dotenv()

from clinic_scheduler.core.timeutils import utcnow  # noqa: E402
from clinic_scheduler.database import AsyncSessionLocal, engine  # noqa: E402
from clinic_scheduler.middleware.logging import configure_logging  # noqa: E402
from clinic_scheduler.services.appointment_service import AppointmentService  # noqa: E402
from clinic_scheduler.services.notification_service import (  # noqa: E402
    DatabaseNotificationSink,
    NotificationDispatcher,
)


async def send_reminders(day: date) -> int:
    """Dispatch reminders for ``day`` and wait for delivery."""
    dispatcher = NotificationDispatcher(DatabaseNotificationSink(AsyncSessionLocal))

    async with AsyncSessionLocal() as session:
        count = await AppointmentService(session, dispatcher=dispatcher).send_reminders(day)

    await dispatcher.drain()
    await engine.dispose()
    return count


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Send appointment reminders for a day")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Appointment date (YYYY-MM-DD), defaults to tomorrow",
    )
    args = parser.parse_args()

    configure_logging()
    day = args.date or (utcnow().date() + timedelta(days=1))

    try:
        count = asyncio.run(send_reminders(day))
    except Exception as e:
        print(f"✗ Failed to send reminders: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ Dispatched {count} reminder(s) for {day.isoformat()}")


if __name__ == "__main__":
    main()
