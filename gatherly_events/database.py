"""
Database engine and session management.

The API process keeps one engine for its lifetime (see ``init_database``).
Celery workers and tests build their own engine and session factory with the
same helpers so every process talks to storage the same way.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .cache import close_cache, init_cache
from .config import Settings, get_settings
from .models.base import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits for a concurrent writer before failing
SQLITE_BUSY_TIMEOUT = 30

# Process-wide engine and session factory, set by init_database()
engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str, settings: Settings) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # No server-side pool; concurrent writers queue on the file lock
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT}}

    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "connect_args": {"server_settings": {"application_name": "gatherly_events"}},
    }


def create_database_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine for the configured (or given) database URL."""
    settings = get_settings()
    url = database_url or settings.database_url
    return create_async_engine(url, echo=settings.debug, **_engine_options(url, settings))


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create a session factory.

    Instances stay readable after commit so services can return them to the
    API layer; a rollback still expires them.
    """
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=True)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on any error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_database() -> None:
    """Create the process engine, ensure the schema exists and connect the cache."""
    global engine, async_session_factory

    settings = get_settings()
    engine = create_database_engine()
    async_session_factory = create_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")

    if settings.enable_cache:
        await init_cache()


async def close_database() -> None:
    """Dispose the process engine and close the cache."""
    global engine, async_session_factory

    if engine is not None:
        await engine.dispose()
        logger.info("Database connections closed")
    engine = None
    async_session_factory = None

    await close_cache()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session from the process factory, for scripts running inside the app context.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(query)
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with session_scope(async_session_factory) as session:
        yield session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_db_session() as session:
        yield session
