"""PostgreSQL engine and sessions.

API handlers get one session per request through get_session. Jobs,
coordinators and agent connections outlive any request; they open a short
session from get_session_factory() for each unit of work so a long
migration never pins a pooled connection.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fleethub.app.config import get_settings
from fleethub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db() -> None:
    global _engine, _session_factory

    config = get_settings().database
    engine = create_async_engine(
        config.url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=True,
    )

    try:
        await ping_db(engine)
    except Exception as e:
        logger.error(
            "PostgreSQL connection failed",
            extra={"event": LogEvent.DB_ERROR, "error_type": type(e).__name__, "error": str(e)},
        )
        await engine.dispose()
        raise

    _engine = engine
    # Records stay readable after commit; jobs keep them across sessions
    _session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    logger.info(
        "PostgreSQL connected",
        extra={"event": LogEvent.APP_STARTED, "pool_size": config.pool_size},
    )


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        logger.info("PostgreSQL disconnected", extra={"event": LogEvent.APP_STOPPED})
    _engine, _session_factory = None, None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized")
    return _engine


async def ping_db(engine: AsyncEngine | None = None) -> None:
    """Round-trip to the server (startup check and /health)."""
    async with (engine or get_engine()).connect() as conn:
        await conn.execute(text("SELECT 1"))


def pool_usage() -> tuple[int, int]:
    """(idle, in use) connections of the engine pool."""
    pool = get_engine().pool
    return pool.checkedin(), pool.checkedout()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for background work (jobs, coordinators, agent sessions)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory
