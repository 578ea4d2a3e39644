"""Async engine ownership and short units of work."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from clinic_notifications.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


class Database:
    """Owns an async engine and hands out transactional sessions.

    Every ``session()`` block is one unit of work: committed on success,
    rolled back on error. Blocks must stay short and must never wrap a
    network send.

    SQLite allows a single writer, so when ``serialize`` is set the units of
    work run one at a time behind an asyncio lock. Do not open a session
    while already inside one in that mode.
    """

    def __init__(self, engine: AsyncEngine, *, serialize: bool = False) -> None:
        self.engine = engine
        self._sessionmaker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._lock = asyncio.Lock() if serialize else None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> Database:
        """Build an engine from settings, applying SQLite specifics when needed."""
        kwargs: dict[str, Any] = {"echo": settings.echo}
        if settings.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in settings.url:
                kwargs["poolclass"] = StaticPool
        else:
            kwargs.update(
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
                pool_pre_ping=settings.pool_pre_ping,
            )

        engine = create_async_engine(settings.url, **kwargs)
        if settings.is_sqlite:
            _enable_sqlite_foreign_keys(engine)

        logger.info(
            "Database engine created",
            extra={"operation": "db.engine", "dialect": engine.dialect.name},
        )
        return cls(engine, serialize=settings.is_sqlite)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session inside a transaction."""
        if self._lock is None:
            async with self._sessionmaker() as session, session.begin():
                yield session
            return

        async with self._lock, self._sessionmaker() as session, session.begin():
            yield session

    async def create_all(self) -> None:
        """Create every table known to the declarative metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()
        logger.info("Database engine disposed", extra={"operation": "db.dispose"})


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_conn: Any, connection_record: Any) -> None:
        _ = connection_record
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
