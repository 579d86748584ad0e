"""Persistent store for dedup claims and outbound delivery status.

The store owns a single async SQLAlchemy engine (SQLite through aiosqlite) for
the whole service run. Components receive the ``Store`` instance and open
short-lived sessions through ``Store.session()``:

    >>> store = Store("sqlite+aiosqlite:///adapter.db")
    >>> await store.init()
    >>> async with store.session() as session:
    ...     await session.commit()
    >>> await store.close()

Timestamps are stored as integer epoch milliseconds.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from sqlalchemy import BigInteger, Boolean, Index, String, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ProcessedMessage(Base):
    """Claim record for an inbound message handle. Inserted once, never updated."""
    __tablename__ = "processed_messages"

    message_id: Mapped[str] = mapped_column(String, primary_key=True)
    processed_at: Mapped[int] = mapped_column(BigInteger, index=True)


class OutboundMessageStatus(Base):
    """Delivery status of a message the service sent."""
    __tablename__ = "outbound_message_status"

    message_handle: Mapped[str] = mapped_column(String, primary_key=True)
    chat_id: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    last_checked: Mapped[int] = mapped_column(BigInteger)
    is_terminal: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)

    __table_args__ = (
        Index("idx_outbound_status_pending", "is_terminal", "last_checked"),
    )


def _set_sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


class Store:
    """Async SQLAlchemy engine and session factory for one service run."""

    def __init__(self, database_url: str):
        url = make_url(database_url)
        if not url.drivername.startswith("sqlite"):
            raise PersistenceError(f"Unsupported database URL: {url.drivername} (only sqlite is supported)")
        if url.database and url.database != ":memory:":
            db_path = Path(url.database).expanduser()
            url = url.set(database=str(db_path))
        self.url = url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    async def init(self) -> None:
        """Create the engine and the schema. Raises PersistenceError on failure."""
        if self._engine is not None:
            return
        try:
            if self.url.database and self.url.database != ":memory:":
                Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)
            engine = create_async_engine(self.url)
            event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to initialize store at {self.url.database}: {e}") from e

        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("Store initialized at %s", self.url.database)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            raise PersistenceError("Store is not initialized")
        async with self._session_factory() as session:
            yield session

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Store closed")
