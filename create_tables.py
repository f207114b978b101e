"""
Script to create all database tables.

Creates the links, clicks, webhooks and webhook_logs tables.
Run this after starting PostgreSQL with Docker.
"""
import asyncio
import sys

from linklytics.database import engine
from linklytics.models.base import Base
# Import all models to register them with Base
from linklytics.models.link import Link  # noqa: F401
from linklytics.models.click import Click  # noqa: F401
from linklytics.models.webhook import Webhook, WebhookLog  # noqa: F401


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main(drop: bool = False):
    """Main entry point."""
    if drop:
        print("Dropping database tables...")
        await drop_all_tables()
    print("Creating database tables...")
    await create_all_tables()
    await engine.dispose()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main(drop="--drop" in sys.argv))
