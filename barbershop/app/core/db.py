"""Engine and session plumbing for the scheduling store.

The engine is created lazily from DATABASE_URL so tests can point it at a
throwaway SQLite file and reset it between runs. Production schema is owned
by the Alembic revisions; ``get_session`` only bootstraps an empty database.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..domain.models import Base

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "DATABASE_URL"
DEFAULT_URL = "postgresql+asyncpg://barber_user:barber_pass@db:5432/barbershop_db"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_SCHEMA_READY: bool = False
_SCHEMA_CHECKING: bool = False


def _make_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, echo=False, future=True)


def _enforce_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ignores FOREIGN KEY clauses unless enabled per connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_database_url() -> str:
    return os.getenv(DATABASE_URL_ENV, DEFAULT_URL)


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        url = get_database_url()
        _engine = _make_engine(url)
        if url.startswith("sqlite"):
            _enforce_sqlite_foreign_keys(_engine)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session; the first call creates the schema if appointments is missing."""
    global _SCHEMA_READY, _SCHEMA_CHECKING
    if not _SCHEMA_READY and not _SCHEMA_CHECKING:
        _SCHEMA_CHECKING = True
        try:
            try:
                async with get_engine().connect() as conn:
                    await conn.execute(text("SELECT 1 FROM appointments LIMIT 1"))
                _SCHEMA_READY = True
            except Exception:
                logger.info("Scheduling tables missing; creating schema")
                await init_db(force=False)
        finally:
            _SCHEMA_CHECKING = False

    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


async def init_db(force: bool = False) -> None:
    """Create every table from the ORM metadata (``force`` drops them first)."""
    global _SCHEMA_READY
    async with get_engine().begin() as conn:
        if force:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    _SCHEMA_READY = True


def _reset_engine_for_tests() -> None:
    global _engine, _session_factory, _SCHEMA_READY, _SCHEMA_CHECKING
    _engine = None
    _session_factory = None
    _SCHEMA_READY = False
    _SCHEMA_CHECKING = False


__all__ = [
    "get_engine",
    "get_database_url",
    "get_session",
    "get_session_factory",
    "init_db",
]
