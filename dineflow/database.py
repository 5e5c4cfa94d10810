"""
Database Connection Module

Owns the async SQLAlchemy engine and session factory behind an explicit
``Database`` handle. The process entry point (FastAPI lifespan, Celery task,
test fixture) creates the handle, calls ``init()`` and ``close()``; request
handlers receive sessions from it through dependency injection.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


class Database:
    """
    Connection handle: one engine plus a session factory.

    Example:
        >>> db = Database("sqlite+aiosqlite:///:memory:")
        >>> await db.init()
        >>> async with db.session() as session:
        ...     ...
        >>> await db.close()
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        engine_kwargs = {"echo": echo}
        # SQLite (tests, local runs) takes no pool size options
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Objects remain accessible after commit
        )

    async def init(self, create_tables: bool = True) -> None:
        """
        Prepare the database.

        Args:
            create_tables: Create all tables that do not exist yet
        """
        if create_tables:
            # Importing models registers every table on Base.metadata
            from dineflow import models  # noqa: F401

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session that is always closed on exit."""
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.close()


def create_database(settings) -> Database:
    """Build a ``Database`` from application settings."""
    return Database(
        settings.database_url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a session from the handle stored on ``app.state`` at startup.
    """
    database: Optional[Database] = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not initialized")

    async with database.session() as session:
        yield session
