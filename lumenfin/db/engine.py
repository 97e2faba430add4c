# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# `ChunkDatabase` owns the async SQLAlchemy engine (and its connection pool)
# for one process. It is constructed by the composition root (the FastAPI
# lifespan, or a Celery task) and handed to the chunk store. There is no
# module-level engine.
#
# LAZY, SINGLE-FLIGHT INITIALIZATION:
# The engine is created on first use. Concurrent first callers wait on one
# asyncio.Lock and the second caller finds the engine already built, so two
# simultaneous first requests never create two pools.
#
# SESSION LIFECYCLE:
#   async with database.session() as session:
#       ...  # commit on normal exit, rollback on exception, always close
#
# The pool is acquired per logical operation and released when the session
# context exits; no connection is held across more than one store call.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from lumenfin.config import Settings, settings as default_settings
from lumenfin.db.models import Base

logger = logging.getLogger(__name__)


class ChunkDatabase:
    """
    Lazily-connected handle to the PostgreSQL chunk database.

    Args:
        url: SQLAlchemy async URL (postgresql+asyncpg://...).
        config: Settings providing pool sizing and timeouts.
    """

    def __init__(self, url: str | None = None, config: Settings | None = None) -> None:
        self._config = config or default_settings
        self._url = url or self._config.database_url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._init_lock = asyncio.Lock()

    async def engine(self) -> AsyncEngine:
        """Return the engine, creating it on first use (single-flight)."""
        if self._engine is not None:
            return self._engine

        async with self._init_lock:
            # Another coroutine may have finished initialization while we waited
            if self._engine is None:
                self._engine = self._create_engine()
                self._session_factory = async_sessionmaker(
                    bind=self._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )
                logger.info(
                    "Created database engine (pool_size=%d, max_overflow=%d)",
                    self._config.database_pool_size,
                    self._config.database_max_overflow,
                )
        return self._engine

    def _create_engine(self) -> AsyncEngine:
        return create_async_engine(
            self._url,
            echo=self._config.debug,
            pool_size=self._config.database_pool_size,
            max_overflow=self._config.database_max_overflow,
            pool_timeout=self._config.database_timeout_seconds,
            pool_pre_ping=True,
            connect_args={"timeout": self._config.database_timeout_seconds},
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provide a transactional session.

        Commits when the block exits normally, rolls back and re-raises on
        any exception.
        """
        await self.engine()
        assert self._session_factory is not None

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Enable pgvector and create tables and indexes if missing."""
        engine = await self.engine()
        async with engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    async def dispose(self) -> None:
        """Close all pooled connections. Safe to call when never connected."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database engine disposed")
