"""
Async database engine and session factory.

Usage:
    from database.connection import get_async_session

    async with get_async_session() as session:
        async with session.begin():
            ...

Isolation contract: the move and reschedule operations read conflicting
appointments and then write in the same transaction. On PostgreSQL the
engine runs every transaction at DB_ISOLATION_LEVEL (SERIALIZABLE by
default) so two concurrent moves onto the same stylist slot cannot both
commit. Lowering the level below REPEATABLE READ reintroduces that
double-booking race.
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)

# Anything usable as `async with factory() as session`
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _engine_options(database_url: str) -> dict[str, Any]:
    settings = get_settings()
    options: dict[str, Any] = {"echo": settings.DB_ECHO}
    if database_url.startswith("postgresql"):
        options.update(
            isolation_level=settings.DB_ISOLATION_LEVEL,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
        )
    return options


def create_engine_from_settings() -> AsyncEngine:
    """Create the async engine for DATABASE_URL."""
    database_url = get_settings().DATABASE_URL
    options = _engine_options(database_url)
    logger.debug(
        f"Creating async engine for {database_url.split('://', 1)[0]} "
        f"(isolation_level={options.get('isolation_level', 'driver default')})"
    )
    return create_async_engine(database_url, **options)


engine = create_engine_from_settings()

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a database session, rolling back on any exception.

    The session is closed when the context exits.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
