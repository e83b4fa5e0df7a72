"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import Table
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tenant_queue.config import get_settings
from tenant_queue.db.models import metadata

logger = logging.getLogger(__name__)

# Engines shared by every component that connects to the same URL
_engines: dict[str, AsyncEngine] = {}


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create a new async engine configured from settings.

    Args:
        database_url: SQLAlchemy async URL.

    Returns:
        AsyncEngine: A fresh engine; the caller owns and disposes it.
    """
    settings = get_settings()
    kwargs = {
        "echo": settings.log_level == "DEBUG",
        "pool_pre_ping": True,
    }
    # SQLite pools do not take size limits
    if make_url(database_url).get_backend_name() != "sqlite":
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
    return create_async_engine(database_url, **kwargs)


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Get or create the shared engine for a database URL.

    Args:
        database_url: SQLAlchemy async URL. Defaults to settings.database_url.

    Returns:
        AsyncEngine: The cached engine for that URL.
    """
    url = database_url or get_settings().database_url
    engine = _engines.get(url)
    if engine is None:
        engine = build_engine(url)
        _engines[url] = engine
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine, tables: list[Table] | None = None) -> None:
    """
    Create tables that do not exist yet.

    Production schemas come from the Alembic revision; this is for tests
    and throwaway databases.
    """
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all, tables=tables)


async def close_db() -> None:
    """
    Dispose every shared engine.
    Should be called on application shutdown.
    """
    for url, engine in list(_engines.items()):
        await engine.dispose()
        _engines.pop(url, None)
    logger.info("Database connections closed")


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """
    Context manager for a transactional session.
    Commits on success and rolls back on any exception.

    Yields:
        AsyncSession: An async database session.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
