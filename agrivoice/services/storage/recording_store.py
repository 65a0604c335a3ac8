"""
Local index of persisted recordings.

``RecordingStore`` keeps the authoritative in-memory list of ``Recording``
metadata and writes the whole list, as a JSON array, to a durable
key-value store after every change. Changes are serialized by an
``asyncio.Lock`` so each read-modify-persist cycle is atomic.
"""

import asyncio
import builtins
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from agrivoice.core.exceptions import StorageUnavailableError
from agrivoice.core.models import Recording, UploadStatus
from agrivoice.services.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

_RECORDING_LIST = TypeAdapter(list[Recording])


class RecordingStore:
    """Append/update/list access to recording metadata.

    Persistence failures are logged and leave the in-memory list intact
    (memory-only mode for that operation); they are never raised.

    Args:
        kv: Durable key-value backend.
        key: Storage key holding the serialized list.
    """

    def __init__(self, kv: KeyValueStore, key: str = "savedRecordings") -> None:
        self._kv = kv
        self._key = key
        self._recordings: list[Recording] = []
        self._lock = asyncio.Lock()

    async def load(self) -> list[Recording]:
        """Hydrate the in-memory list from storage.

        Empty, unreadable or corrupt storage yields an empty list.
        """
        async with self._lock:
            self._recordings = await self._read()
            logger.info("Loaded %d saved recordings", len(self._recordings))
            return self.list()

    async def _read(self) -> list[Recording]:
        try:
            raw = await self._kv.get_item(self._key)
        except StorageUnavailableError as exc:
            logger.warning("Error loading saved recordings: %s", exc.detail)
            return []
        if not raw:
            return []
        try:
            return _RECORDING_LIST.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Saved recordings index is corrupt, starting empty: %s", exc)
            return []

    async def append(self, recording: Recording) -> None:
        """Add one recording and persist the full list."""
        async with self._lock:
            self._recordings.append(recording.model_copy())
            await self._persist()

    async def update(self, recording_id: str, patch: dict[str, Any]) -> Recording | None:
        """Merge *patch* into the recording with *recording_id*.

        An unknown id is a no-op and returns None.
        """
        async with self._lock:
            for index, current in enumerate(self._recordings):
                if current.id == recording_id:
                    break
            else:
                logger.debug("Update for unknown recording %s ignored", recording_id)
                return None

            updated = Recording.model_validate({**current.model_dump(), **patch})
            self._recordings[index] = updated
            await self._persist()
            return updated.model_copy()

    def list(self) -> list[Recording]:
        """Return copies of all recordings in the order they were appended."""
        return [r.model_copy() for r in self._recordings]

    def get(self, recording_id: str) -> Recording | None:
        for recording in self._recordings:
            if recording.id == recording_id:
                return recording.model_copy()
        return None

    def pending(self) -> builtins.list[Recording]:
        """Recordings that still need an upload attempt (pending or failed)."""
        return [
            r.model_copy()
            for r in self._recordings
            if r.upload_status in (UploadStatus.pending, UploadStatus.failed)
        ]

    async def _persist(self) -> None:
        payload = _RECORDING_LIST.dump_json(self._recordings, by_alias=True).decode()
        try:
            await self._kv.set_item(self._key, payload)
        except StorageUnavailableError as exc:
            logger.warning("Error saving recordings, keeping them in memory: %s", exc.detail)
