"""Script to create the queue tables directly, without migrations.

Meant for local development databases; production uses Alembic.
"""

import asyncio

from sqlalchemy import text

from healthqueue.database import engine
from healthqueue.models import metadata


async def init_db() -> None:
    """Create every table of the queue schema."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Created tables: {', '.join(sorted(metadata.tables))}")


if __name__ == "__main__":
    asyncio.run(init_db())
