# allgood/scripts/create_tables.py
import asyncio

from allgood.core.config import settings
from allgood.db.session import create_tables

print(f"Creating database tables in {settings.DATABASE_URL} ...")


async def create_all_tables() -> None:
    try:
        await create_tables()
        print("✅ Database tables created successfully!")
    except Exception as e:
        print(f"❌ Failed to create database tables: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(create_all_tables())
