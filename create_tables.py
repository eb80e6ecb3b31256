"""
Script to create the webhook tables.

Creates every table defined in the models. Handy for local development;
production databases are migrated with Alembic.
"""
import asyncio
import sys

from hookrelay.database import engine
from hookrelay.models.base import Base
from hookrelay.models.webhook import DeliveryAttempt, WebhookSubscription  # noqa: F401 - registers tables


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped.")


if __name__ == "__main__":
    if "--drop" in sys.argv:
        asyncio.run(drop_all_tables())
    asyncio.run(create_all_tables())
