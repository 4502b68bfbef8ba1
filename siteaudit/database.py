"""
Database connection and session management for SiteAudit.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from siteaudit.config import settings
from siteaudit.models.base import Base


def async_database_url(url: str) -> str:
    """Convert a sync postgres URL to its asyncpg form."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _engine_options(url: str, pool_size: int, max_overflow: int) -> dict:
    options = {"pool_pre_ping": True}
    # SQLite (tests, local runs) has no connection pool to size.
    if not url.startswith("sqlite"):
        options.update(pool_size=pool_size, max_overflow=max_overflow)
    return options


DATABASE_URL = async_database_url(settings.DATABASE_URL)

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    **_engine_options(DATABASE_URL, pool_size=10, max_overflow=20),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def task_session_maker() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh engine and session maker for one Celery task.

    Each task runs in its own event loop, and asyncpg connections cannot
    be shared across loops.
    """
    task_engine = create_async_engine(
        DATABASE_URL,
        **_engine_options(DATABASE_URL, pool_size=5, max_overflow=10),
    )
    try:
        yield async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await task_engine.dispose()


async def init_db() -> None:
    """Initialize database tables."""
    from siteaudit.models.audit import AuditJob  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
