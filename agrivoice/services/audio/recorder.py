"""Single-capture recorder with local persistence.

``Recorder`` wraps the platform ``AudioCapture``: it acquires microphone
permission, owns the one active capture, and on ``stop_and_save`` copies
the finished file into the recordings directory and appends a
``Recording`` to the ``RecordingStore`` before returning.
"""

import asyncio
import logging
import shutil
from pathlib import Path

from agrivoice.core.exceptions import (
    CaptureFailedError,
    PermissionDeniedError,
    RecordingAlreadyActiveError,
)
from agrivoice.core.models import CaptureOwner, Recording
from agrivoice.core.utils import build_recording_filename, build_recording_id, now_millis
from agrivoice.services.audio.capture import CALL_AUDIO_MODE, AudioCapture
from agrivoice.services.storage.recording_store import RecordingStore

logger = logging.getLogger(__name__)


class Recorder:
    """Owns the single active audio capture.

    ``start``/``stop`` are serialized by an internal lock, so a start never
    begins before a prior stop has resolved.

    Args:
        capture: Platform audio-capture backend.
        store: Recording index that receives every saved capture.
        recordings_dir: Directory for persisted audio files.
        audio_format: Container format tag and file extension (e.g. "m4a").
    """

    def __init__(
        self,
        capture: AudioCapture,
        store: RecordingStore,
        recordings_dir: str | Path,
        audio_format: str = "m4a",
    ) -> None:
        self._capture = capture
        self._store = store
        self._recordings_dir = Path(recordings_dir)
        self._format = audio_format
        self._owner: CaptureOwner | None = None
        self._permission_granted = False
        self._lock = asyncio.Lock()

    @property
    def is_active(self) -> bool:
        return self._owner is not None

    @property
    def owner(self) -> CaptureOwner | None:
        return self._owner

    @property
    def recordings_dir(self) -> Path:
        return self._recordings_dir

    async def request_permission(self) -> bool:
        """Request microphone access; a granted permission is remembered."""
        if self._permission_granted:
            return True
        try:
            self._permission_granted = await self._capture.request_permission()
        except Exception:
            logger.exception("Permission request error")
            self._permission_granted = False
        return self._permission_granted

    async def start(self, owner: CaptureOwner = CaptureOwner.call) -> None:
        """Start a new capture on behalf of *owner*.

        Raises:
            PermissionDeniedError: Microphone access was refused.
            RecordingAlreadyActiveError: A capture is already running.
            CaptureFailedError: The platform capture could not be started.
        """
        async with self._lock:
            if self._owner is not None:
                raise RecordingAlreadyActiveError(self._owner)
            if not await self.request_permission():
                raise PermissionDeniedError()

            try:
                await self._capture.set_audio_mode(CALL_AUDIO_MODE)
                await self._capture.start()
            except Exception as exc:
                logger.exception("Failed to start recording")
                raise CaptureFailedError(f"Audio capture failed to start: {exc}") from exc
            self._owner = owner
            logger.info("Recording started (%s)", owner)

    async def stop(self) -> str | None:
        """Finalize the active capture and return its temporary file path.

        Returns None, without error, when nothing is recording.
        """
        async with self._lock:
            if self._owner is None:
                logger.debug("Stop requested with no active capture")
                return None
            owner, self._owner = self._owner, None
            try:
                uri = await self._capture.stop()
            except Exception:
                logger.exception("Failed to stop recording")
                return None
            logger.info("Recording stopped (%s)", owner)
            return uri

    async def stop_and_save(
        self,
        duration_seconds: int,
        language: str,
        call_id: str | None = None,
        segment_index: int | None = None,
    ) -> Recording | None:
        """Stop the capture and persist it as a ``Recording``.

        Args:
            duration_seconds: Wall-clock call duration at the time of saving.
            language: Language code active during the capture.
            call_id: Session the capture belongs to, if any.
            segment_index: Index within the session for segment captures.

        Returns:
            The stored Recording, or None if nothing was recording or the
            platform file was missing.
        """
        uri = await self.stop()
        if uri is None:
            return None
        return await self.save(uri, duration_seconds, language, call_id, segment_index)

    async def save(
        self,
        uri: str,
        duration_seconds: int,
        language: str,
        call_id: str | None = None,
        segment_index: int | None = None,
    ) -> Recording | None:
        """Copy a finished capture into the recordings directory and index it.

        If the copy fails the temporary file is indexed in place.
        """
        source = Path(uri)
        try:
            size = source.stat().st_size
        except OSError:
            logger.error("Recording file does not exist: %s", uri)
            return None

        created = now_millis()
        filename = build_recording_filename(created, language, self._format, segment_index)
        target = self._recordings_dir / filename
        try:
            await asyncio.to_thread(_copy_into, source, target)
            local_path = str(target.resolve())
        except OSError as exc:
            logger.warning("Failed to copy recording to %s, keeping temp file: %s", target, exc)
            local_path = str(source)

        recording = Recording(
            id=build_recording_id(created, segment_index),
            filename=filename,
            local_path=local_path,
            duration_seconds=duration_seconds,
            created_at_millis=created,
            size_bytes=size,
            language_code=language,
            format=self._format,
            call_id=call_id,
            segment_index=segment_index,
        )
        await self._store.append(recording)
        logger.info("Recording saved: %s (%d bytes)", filename, size)
        return recording


def _copy_into(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, target)
