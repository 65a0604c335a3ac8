"""
Application assembly.

``CallAssistant`` builds every call-client component from ``Settings`` and
a platform ``AudioCapture``, and owns their startup and shutdown. The UI
layer talks to its public attributes (``call``, ``voice_query``,
``segments``, ``uploader``, ``store``, ``monitor``, ``client``).
"""

import json
import logging

import httpx
from sqlalchemy.exc import SQLAlchemyError

from agrivoice.core.config import Settings, get_settings
from agrivoice.core.exceptions import StorageUnavailableError
from agrivoice.core.models import VoiceQueryContext
from agrivoice.services.api.client import BackendClient, RequestTimeouts
from agrivoice.services.audio.capture import AudioCapture
from agrivoice.services.audio.recorder import Recorder
from agrivoice.services.call.segments import SegmentCoordinator
from agrivoice.services.call.session import AutoRecordObserver, CallSessionMachine
from agrivoice.services.call.voice_query import VoiceQueryOrchestrator
from agrivoice.services.connectivity import ConnectivityMonitor
from agrivoice.services.scheduler import Scheduler
from agrivoice.services.storage.database import close_db, get_engine, get_session_factory, init_db
from agrivoice.services.storage.kv import KeyValueStore, SQLKeyValueStore
from agrivoice.services.storage.recording_store import RecordingStore
from agrivoice.services.uploader import RecordingUploader

logger = logging.getLogger(__name__)


class CallAssistant:
    """Wires the recorder, store, uploader, monitor and call services together.

    Args:
        capture: Platform audio-capture backend.
        settings: Settings override (defaults to ``get_settings()``).
        kv: Key-value backend override; defaults to the SQLite-backed store.
        transport: Optional httpx transport for the backend client.
        on_permission_denied: Callback invoked when auto-record is refused
            microphone access.
    """

    def __init__(
        self,
        capture: AudioCapture,
        settings: Settings | None = None,
        kv: KeyValueStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_permission_denied=None,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings

        self._engine = get_engine(s.database_url) if kv is None else None
        self.kv = kv or SQLKeyValueStore(get_session_factory(self._engine))
        self.scheduler = Scheduler()
        self.client = BackendClient(s.api_base_url, RequestTimeouts.from_settings(s), transport)
        self.store = RecordingStore(self.kv, s.recordings_index_key)
        self.recorder = Recorder(capture, self.store, s.recordings_dir, s.recording_format)
        self.uploader = RecordingUploader(self.client, self.store, s.user_id, s.recording_mime_type)
        self.monitor = ConnectivityMonitor(self.client, self.scheduler, s.health_poll_interval)

        self.call = CallSessionMachine(
            self.recorder, self.client, self.uploader, self.monitor, self.scheduler, s
        )
        self.auto_record = AutoRecordObserver(
            self.recorder, enabled=s.auto_record, on_permission_denied=on_permission_denied
        )
        self.segments = SegmentCoordinator(
            self.call,
            self.recorder,
            self.uploader,
            self.monitor,
            self.scheduler,
            enabled=s.segment_mode,
            interval=s.segment_interval,
            restart_delay=s.segment_restart_delay,
        )
        self.voice_query = VoiceQueryOrchestrator(
            self.call,
            self.recorder,
            self.client,
            default_context=self.default_voice_context(),
            segments=self.segments,
            clip_duration=s.voice_query_duration,
            content_type=s.recording_mime_type,
        )

        # Auto-record must start the capture before segment mode looks for it
        self.call.add_observer(self.auto_record)
        self.call.add_observer(self.segments)
        self.call.add_observer(self.voice_query)

    def default_voice_context(self, language: str | None = None) -> VoiceQueryContext:
        s = self.settings
        return VoiceQueryContext(
            district=s.district,
            state=s.state,
            choice=s.query_choice,
            current_crop=s.current_crop,
            preferred_language=language or s.default_language,
        )

    async def start(self) -> None:
        """Prepare storage, hydrate the recording index and start polling the backend."""
        if self._engine is not None:
            try:
                await init_db(self._engine)
            except (SQLAlchemyError, OSError) as exc:
                logger.warning("Database unavailable, recordings kept in memory only: %s", exc)
        await self.store.load()
        await self.load_settings()
        await self.monitor.start()

    async def load_settings(self) -> None:
        """Apply the persisted auto-record preference, if any."""
        try:
            raw = await self.kv.get_item(self.settings.auto_record_key)
        except StorageUnavailableError as exc:
            logger.warning("Error loading recording settings: %s", exc.detail)
            return
        if raw is None:
            return
        try:
            self.auto_record.enabled = bool(json.loads(raw))
        except json.JSONDecodeError:
            logger.warning("Ignoring invalid auto-record setting: %r", raw)

    async def set_auto_record(self, enabled: bool) -> None:
        """Toggle auto-recording and persist the preference."""
        self.auto_record.enabled = enabled
        try:
            await self.kv.set_item(self.settings.auto_record_key, json.dumps(enabled))
        except StorageUnavailableError as exc:
            logger.warning("Error saving recording settings: %s", exc.detail)

    async def aclose(self) -> None:
        """End any call in progress and release timers, uploads and connections."""
        await self.call.end(ended_by="shutdown")
        self.monitor.stop()
        await self.uploader.drain()
        await self.scheduler.cancel_all()
        await self.client.aclose()
        if self._engine is not None:
            await close_db()
