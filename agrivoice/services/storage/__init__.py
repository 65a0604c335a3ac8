"""
Storage module - Durable key-value storage and the local recording index.
"""

from agrivoice.services.storage.database import (
    Base,
    close_db,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)
from agrivoice.services.storage.kv import KeyValueStore, MemoryKeyValueStore, SQLKeyValueStore
from agrivoice.services.storage.recording_store import RecordingStore

__all__ = [
    "Base",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RecordingStore",
    "SQLKeyValueStore",
    "close_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]
