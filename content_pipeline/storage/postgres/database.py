"""
PostgreSQL engine and session management for the workflow store.

Production schemas come from the Alembic migration; ``create_tables`` exists
for local runs and the integration tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from content_pipeline.config import get_settings
from content_pipeline.config.settings import PostgresSettings
from content_pipeline.storage.postgres.models import Base


class Database:
    """
    Owns the async engine and hands out one session per store call.
    """

    def __init__(self, settings: Optional[PostgresSettings] = None):
        self._settings = settings or get_settings().postgres
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        """Create the pooled engine. No connection is opened until first use."""
        self._engine = create_async_engine(
            self._settings.url,
            pool_size=self._settings.pool_size,
            max_overflow=self._settings.max_overflow,
            pool_timeout=self._settings.pool_timeout,
            pool_pre_ping=True,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    async def ping(self) -> None:
        """Open a connection and run a trivial query; raises if unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def create_tables(self) -> None:
        """Create ``workflow_runs`` and ``workflow_tasks`` if missing."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        One transaction: committed when the block exits cleanly, rolled back
        on error.

        Usage:
            async with database.session() as session:
                model = await session.get(WorkflowRunModel, run_id)
        """
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
