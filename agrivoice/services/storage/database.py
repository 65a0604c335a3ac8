"""
Async SQLite engine backing the durable key-value store.

The call client keeps one engine per process. ``session_scope()`` wraps a
unit of work: it commits on clean exit and rolls back on error.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from agrivoice.core.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for the client's tables."""


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _ensure_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def get_engine(url: str | None = None) -> AsyncEngine:
    """Return the process engine, creating it (and the SQLite directory) on first use.

    Args:
        url: Database URL; defaults to ``Settings.database_url``. Ignored once
            the engine exists.
    """
    global _engine
    if _engine is None:
        db_url = url or get_settings().database_url
        _ensure_sqlite_dir(db_url)
        _engine = create_async_engine(db_url, echo=False)
    return _engine


def get_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(engine or get_engine(), expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session from *factory* (or the process factory) as one transaction."""
    async with (factory or get_session_factory())() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the key-value table if it does not exist yet."""
    from agrivoice.services.storage import models_db  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the process engine so the next ``get_engine`` starts fresh."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
