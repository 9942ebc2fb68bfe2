"""
Async database session management for the purchase intent engine.

Provides the async engine and session factory.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _async_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


async def init_db(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    create_tables: bool = True,
) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the async database engine.

    Args:
        database_url: PostgreSQL or SQLite connection string
        pool_size: Connection pool size (ignored for SQLite)
        max_overflow: Max overflow connections (ignored for SQLite)
        create_tables: Create missing tables (the host app owns migrations)

    Returns:
        The session factory
    """
    global _engine, _session_factory

    database_url = _async_url(database_url)

    if database_url.startswith("sqlite"):
        engine_kwargs = {}
        if ":memory:" in database_url or database_url.endswith("://"):
            # One shared connection, otherwise every session sees an empty DB
            engine_kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        _engine = create_async_engine(database_url, echo=False, **engine_kwargs)
    else:
        _engine = create_async_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            echo=False,
        )

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized")
    return _session_factory


async def close_db():
    """Close the database engine."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")
