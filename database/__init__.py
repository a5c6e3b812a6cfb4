"""Database session/engine bootstrap for the consolidated ad store."""

import os

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.models import Base

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///adsweep.db",
)

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"timeout": 30} if DATABASE_URL.startswith("sqlite") else {},
)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncSession:
    """Provide DB session dependency for FastAPI."""
    async with async_session() as session:
        yield session


async def init_db(target_engine=None):
    """Create tables; SQLite gets WAL pragmas for concurrent readers."""
    target_engine = target_engine or engine
    async with target_engine.begin() as conn:
        if target_engine.url.get_backend_name() == "sqlite":
            await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
            await conn.exec_driver_sql("PRAGMA cache_size=10000")
        await conn.run_sync(Base.metadata.create_all)
