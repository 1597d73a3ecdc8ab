"""Script to create the schema directly from the table definitions.

Meant for local SQLite databases and throwaway environments; PostgreSQL
deployments should use ``scripts/migrate.py`` so the no-overlap exclusion
constraint is installed.
"""

import asyncio

from sqlalchemy import text

from clinic_scheduler.database import engine
from clinic_scheduler.models import metadata


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
