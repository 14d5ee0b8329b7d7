from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from allgood.core.config import settings
from allgood.db.base import Base, import_models


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_dir(settings.DATABASE_URL)

# One writer process; a fresh connection per session keeps aiosqlite off shared loops.
engine = create_async_engine(
    settings.DATABASE_URL,
    poolclass=NullPool,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
)

# Alias for scripts and the worker
async_session = AsyncSessionLocal


async def create_tables() -> None:
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# FastAPI dependency
async def get_async_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session
