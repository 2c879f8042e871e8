"""
Database Configuration

SECURITY:
- SQLAlchemy echo disabled in production to prevent credential leakage
- Connection string never logged

The engine and session factory are built on first use rather than at import
time, so services receive an ``AsyncSession`` explicitly and tests can bind
their own engine.
"""

import logging
import time
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# Slow query logging
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info["query_start_time"] = time.monotonic()


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start = conn.info.get("query_start_time")
    if start is None:
        return
    duration_ms = (time.monotonic() - start) * 1000
    if duration_ms >= settings.SLOW_QUERY_THRESHOLD_MS:
        param_count = len(parameters) if parameters else 0
        truncated = statement[:200] + ("..." if len(statement) > 200 else "")
        logger.warning(
            "Slow query (%.0fms, %d params): %s", duration_ms, param_count, truncated
        )


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with slow query logging attached."""
    options = {"echo": echo, "future": True}
    if not database_url.startswith("sqlite"):
        # Connection pool settings for production stability
        options.update(
            pool_size=20,           # Base pool connections (default is 5)
            max_overflow=10,        # Additional connections for peak load (total max: 30)
            pool_recycle=3600,      # Recycle connections after 1 hour to prevent stale connections
            pool_pre_ping=True,     # Test connection validity before use
        )

    engine = create_async_engine(database_url, **options)
    event.listen(engine.sync_engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(engine.sync_engine, "after_cursor_execute", _after_cursor_execute)
    logger.info("Slow query logging enabled (threshold: %dms)", settings.SLOW_QUERY_THRESHOLD_MS)
    return engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@lru_cache()
def get_engine() -> AsyncEngine:
    """Process-wide engine for the configured DATABASE_URL."""
    # SECURITY: Use sqlalchemy_echo property which is disabled in production
    return build_engine(settings.DATABASE_URL, echo=settings.sqlalchemy_echo)


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return build_session_maker(get_engine())


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a database session.

    Note: Callers are responsible for calling commit() when needed.
    This only provides the session and handles cleanup.
    """
    session = get_session_maker()()
    try:
        yield session
    finally:
        await session.close()


async def init_db(engine: AsyncEngine | None = None):
    """Initialize database tables."""
    # Register every mapped class before create_all
    import app.models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
