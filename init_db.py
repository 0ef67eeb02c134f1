"""Initialize database schema for the marketplace.

Creates all tables for catalog, intakes, matches and interaction history.
Pass --drop to recreate them from scratch.
"""

import asyncio
import sys

from marketplace.config import settings
from marketplace.db import create_engine_from_settings
from marketplace.models import Base


async def init_database(drop: bool = False):
    """Create all database tables."""
    print(f"Initializing database: {settings.db.url}")
    engine = create_engine_from_settings()

    try:
        async with engine.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)
                print("✓ Dropped existing tables")

            await conn.run_sync(Base.metadata.create_all)
            print("✓ Created all tables")
    finally:
        await engine.dispose()

    print("\n✅ Database initialization complete!")
    print(f"Tables: {', '.join(Base.metadata.tables.keys())}")


async def main():
    """Main entry point."""
    try:
        await init_database(drop="--drop" in sys.argv[1:])
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
