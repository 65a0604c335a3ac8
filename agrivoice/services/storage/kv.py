"""
Durable key-value storage backends.

``RecordingStore`` and the settings helpers only depend on the
``KeyValueStore`` interface. ``SQLKeyValueStore`` persists through async
SQLAlchemy; ``MemoryKeyValueStore`` keeps values for the process lifetime.
"""

from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agrivoice.core.exceptions import StorageUnavailableError
from agrivoice.services.storage.database import session_scope
from agrivoice.services.storage.models_db import KeyValueEntry


class KeyValueStore(ABC):
    """Interface every key-value backend must implement."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the value stored under *key*, or None if absent.

        Raises:
            StorageUnavailableError: The backend could not be read.
        """

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value.

        Raises:
            StorageUnavailableError: The backend could not be written.
        """


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store; nothing survives a restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value


class SQLKeyValueStore(KeyValueStore):
    """Key-value store on the ``key_value_entries`` table.

    Args:
        session_factory: Optional session factory (uses the module singleton
            from ``database.get_session_factory`` if not provided).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def get_item(self, key: str) -> str | None:
        try:
            async with session_scope(self._session_factory) as session:
                entry = await session.get(KeyValueEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Failed to read {key!r}: {exc}") from exc

    async def set_item(self, key: str, value: str) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    entry.value = value
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Failed to write {key!r}: {exc}") from exc
