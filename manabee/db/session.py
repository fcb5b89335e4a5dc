"""
Database Session Management - Async SQLAlchemy engine and session factory.

The engine is owned by a ``Database`` object constructed at startup and
disposed at shutdown; nothing is created on import.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from manabee.config import Settings


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the async engine described by the settings."""
    if settings.is_sqlite:
        # SQLite has no connection pool tuning
        return create_async_engine(settings.database_url, echo=settings.log_level == "DEBUG")
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        echo=settings.log_level == "DEBUG",
    )


class Database:
    """Owns the engine and session factory for the process lifetime."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(create_engine_from_settings(settings))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Get an async database session.

        Usage:
            async with database.session() as session:
                await session.execute(...)
                await session.commit()
        """
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def dispose(self) -> None:
        """Close the engine (for graceful shutdown)."""
        await self.engine.dispose()
