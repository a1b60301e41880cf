"""
Database connection management.
Handles async SQLAlchemy engine and session creation for the task store.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from taskgraph.config import get_settings
from taskgraph.db.models import Base
from taskgraph.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    """Let readers proceed while another connection holds the write lock."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite databases get a NullPool and WAL journaling so several workers in
    one process can contend for the same file.

    Args:
        database_url: Async SQLAlchemy URL.
        echo: Echo SQL statements.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    if _is_sqlite(database_url):
        engine = create_async_engine(
            database_url,
            poolclass=NullPool,
            connect_args={"timeout": 30},
            echo=echo,
        )
        event.listen(engine.sync_engine, "connect", _enable_sqlite_wal)
        return engine

    settings = get_settings()
    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=echo,
        pool_pre_ping=True,
    )


class TaskStore:
    """
    Handle on the shared persistent task store.

    Owns the engine and session factory. Every store operation runs in its own
    short transaction opened with `session()`; the SQL itself lives in
    `TaskRepository`.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._closed = False

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "TaskStore":
        """Create a store with its own engine."""
        return cls(create_engine_for_url(database_url, echo=echo))

    @classmethod
    def from_settings(cls) -> "TaskStore":
        """Create a store from application settings."""
        settings = get_settings()
        store = cls.from_url(
            settings.database_url,
            echo=settings.log_level == "DEBUG",
        )
        if settings.otel_enabled:
            from taskgraph.observability.tracing import instrument_sqlalchemy

            instrument_sqlalchemy(store.engine.sync_engine)
        return store

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def create_schema(self) -> None:
        """Create the tasks table and indexes if they do not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Task store schema ready")

    async def ping(self) -> bool:
        """Check store connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except StoreUnavailableError:
            return False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for one store transaction.

        Commits on success and rolls back on error. Connection-level failures
        are reported as StoreUnavailableError.

        Yields:
            AsyncSession: An async database session.
        """
        if self._closed:
            raise StoreUnavailableError("Task store is closed")

        try:
            async with self._session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e

    async def close(self) -> None:
        """Dispose of the engine. Further sessions raise StoreUnavailableError."""
        if self._closed:
            return
        self._closed = True
        await self._engine.dispose()
        logger.info("Task store closed")
