"""Call session state machine.

``CallSessionMachine`` owns the simulated call lifecycle
(idle -> connecting -> connected -> idle), the session identity and the
duration timer. Side effects such as auto-recording, segment cutting and
voice-query cancellation are attached as ``CallObserver`` instances rather
than being part of the transitions.

Usage::

    machine = CallSessionMachine(recorder, client, uploader, monitor, scheduler)
    machine.add_observer(AutoRecordObserver(recorder))
    await machine.start(language="te")
    ...
    await machine.end()
"""

import asyncio
import logging
import uuid
from typing import Any

from agrivoice.core.config import Settings, get_settings
from agrivoice.core.exceptions import AgriVoiceError, PermissionDeniedError
from agrivoice.core.models import CallEndEvent, CallSession, CallState, CaptureOwner, Recording
from agrivoice.core.utils import device_info, millis_to_iso, now_millis
from agrivoice.services.api.client import BackendClient
from agrivoice.services.audio.recorder import Recorder
from agrivoice.services.connectivity import ConnectivityMonitor
from agrivoice.services.scheduler import Scheduler, TimerHandle
from agrivoice.services.uploader import RecordingUploader

logger = logging.getLogger(__name__)


class CallObserver:
    """Receives call lifecycle notifications. Override the hooks you need."""

    async def on_connected(self, session: CallSession) -> None:
        """The call reached CONNECTED and *session* was created."""

    async def on_ending(self, session: CallSession) -> None:
        """Teardown is starting; release anything that holds the recorder."""

    async def on_idle(self) -> None:
        """The machine is back in IDLE with all session state reset."""


class CallSessionMachine:
    """Drives one call at a time through its states.

    Args:
        recorder: Shared recorder; stopped and saved on teardown.
        client: Backend client for the call-end event.
        uploader: Uploads the final whole-call recording.
        monitor: Connectivity monitor consulted before expendable uploads.
        scheduler: Owns the connecting-delay and duration-tick timers.
        settings: Timer durations, user id and default language.
    """

    def __init__(
        self,
        recorder: Recorder,
        client: BackendClient,
        uploader: RecordingUploader,
        monitor: ConnectivityMonitor,
        scheduler: Scheduler,
        settings: Settings | None = None,
    ) -> None:
        self._recorder = recorder
        self._client = client
        self._uploader = uploader
        self._monitor = monitor
        self._scheduler = scheduler
        self._settings = settings or get_settings()

        self._observers: list[CallObserver] = []
        self._state = CallState.idle
        self._session: CallSession | None = None
        self._language = self._settings.default_language
        self._muted = False
        self._ending = False
        self._connect_handle: TimerHandle | None = None
        self._tick_handle: TimerHandle | None = None
        # Cleared while on_connected hooks run
        self._connect_settled = asyncio.Event()
        self._connect_settled.set()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """True while connected and not tearing down."""
        return self._state == CallState.connected and not self._ending

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def call_id(self) -> str | None:
        return self._session.call_id if self._session else None

    @property
    def duration_seconds(self) -> int:
        return self._session.duration_seconds if self._session else 0

    @property
    def language(self) -> str:
        return self._language

    @property
    def is_muted(self) -> bool:
        return self._muted

    def add_observer(self, observer: CallObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: CallObserver) -> None:
        self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, language: str | None = None) -> bool:
        """IDLE -> CONNECTING; CONNECTED follows after the connect delay.

        Returns:
            False if a call is already in progress.
        """
        if self._state != CallState.idle:
            logger.warning("Call start ignored in state %s", self._state)
            return False

        self._language = language or self._settings.default_language
        self._muted = False
        self._state = CallState.connecting
        self._connect_handle = self._scheduler.call_later(
            self._settings.connect_delay, self._on_connect_delay, name="call-connect"
        )
        logger.info("Call connecting (language=%s)", self._language)
        return True

    async def _on_connect_delay(self) -> None:
        self._connect_handle = None
        if self._state != CallState.connecting:
            return

        start = now_millis()
        self._session = CallSession(
            call_id=f"call_{start}_{uuid.uuid4().hex[:8]}",
            start_time_millis=start,
            language=self._language,
        )
        self._state = CallState.connected
        self._tick_handle = self._scheduler.call_every(
            self._settings.duration_tick, self._on_tick, name="call-duration"
        )
        logger.info("Call connected: %s", self._session.call_id)

        session = self._session
        self._connect_settled.clear()
        try:
            for observer in list(self._observers):
                try:
                    await observer.on_connected(session)
                except Exception:
                    logger.exception("Observer %r failed on connect", observer)
        finally:
            self._connect_settled.set()

    async def _on_tick(self) -> None:
        if self._session is not None and self._state == CallState.connected:
            self._session.duration_seconds += 1

    def toggle_mute(self) -> bool:
        self._muted = not self._muted
        return self._muted

    async def end(self, ended_by: str = "user", metadata: dict[str, Any] | None = None) -> None:
        """End the call from any state.

        CONNECTING resets immediately; CONNECTED runs the full teardown.
        IDLE (or a teardown already in progress) is a no-op.

        Args:
            ended_by: Who ended the call, reported in the call-end event.
            metadata: Extra fields merged into the call-end event metadata.
        """
        if self._state == CallState.connecting:
            if self._connect_handle is not None:
                self._connect_handle.cancel()
                self._connect_handle = None
            self._reset()
            logger.info("Call cancelled while connecting")
            await self._notify_idle()
        elif self._state == CallState.connected and not self._ending:
            await self._teardown(ended_by, metadata or {})

    async def _teardown(self, ended_by: str, extra_metadata: dict[str, Any]) -> None:
        self._ending = True
        session = self._session
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        end_time = now_millis()

        try:
            # on_connected hooks may still be starting the capture; it is stopped below
            await self._connect_settled.wait()
            for observer in list(self._observers):
                try:
                    await observer.on_ending(session)
                except Exception:
                    logger.exception("Observer %r failed on ending", observer)

            final = await self._stop_call_capture(session)
            if self._recorder.is_active:
                await self._recorder.stop()

            result = await self._client.send_call_end_event(
                self._build_end_event(session, end_time, final, ended_by, extra_metadata)
            )
            if not result.success:
                logger.warning("Call end event not delivered: %s", result.error)

            if final is not None and self._monitor.is_reachable:
                await self._uploader.upload(final)
        except Exception:
            logger.exception("Call teardown failed for %s", session.call_id)
        finally:
            self._reset()
            logger.info("Call ended: %s (%ds)", session.call_id, session.duration_seconds)
            await self._notify_idle()

    async def _stop_call_capture(self, session: CallSession) -> Recording | None:
        if self._recorder.owner != CaptureOwner.call:
            return None
        return await self._recorder.stop_and_save(
            duration_seconds=session.duration_seconds,
            language=session.language,
            call_id=session.call_id,
        )

    def _build_end_event(
        self,
        session: CallSession,
        end_time: int,
        final: Recording | None,
        ended_by: str,
        extra_metadata: dict[str, Any],
    ) -> CallEndEvent:
        was_recorded = final is not None or bool(session.segments) or bool(session.pieces)
        metadata = {
            "wasRecorded": was_recorded,
            "endedBy": ended_by,
            "totalSegments": len(session.segments),
            "hadVoiceQuery": session.voice_query_used,
            **extra_metadata,
        }
        return CallEndEvent(
            call_id=session.call_id,
            user_id=self._settings.user_id,
            duration=session.duration_seconds,
            start_time=millis_to_iso(session.start_time_millis),
            end_time=millis_to_iso(end_time),
            language=session.language,
            recording_path=final.local_path if final else None,
            device_info=device_info(),
            metadata=metadata,
        )

    def _reset(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        self._session = None
        self._muted = False
        self._ending = False
        self._state = CallState.idle

    async def _notify_idle(self) -> None:
        for observer in list(self._observers):
            try:
                await observer.on_idle()
            except Exception:
                logger.exception("Observer %r failed on idle", observer)

    # ------------------------------------------------------------------
    # Capture hand-over (used by the voice query orchestrator)
    # ------------------------------------------------------------------

    async def flush_recording(self) -> Recording | None:
        """Save the current call capture as a whole-call piece without ending the call."""
        session = self._session
        if session is None or self._recorder.owner != CaptureOwner.call:
            return None
        piece = await self._stop_call_capture(session)
        if piece is None:
            return None
        session.pieces.append(piece)
        if self._monitor.is_reachable:
            self._uploader.upload_in_background(piece)
        return piece

    async def resume_recording(self) -> bool:
        """Restart the call capture if the call is still connected."""
        if not self.is_connected or self._recorder.is_active:
            return False
        try:
            await self._recorder.start(owner=CaptureOwner.call)
        except AgriVoiceError as exc:
            logger.warning("Could not resume call recording: %s", exc.detail)
            return False
        return True


class AutoRecordObserver(CallObserver):
    """Starts the call capture when a call connects.

    Args:
        recorder: Shared recorder.
        enabled: Whether auto-recording is on.
        on_permission_denied: Optional callback used to explain a refused
            microphone permission to the user.
    """

    def __init__(self, recorder: Recorder, enabled: bool = True, on_permission_denied=None) -> None:
        self._recorder = recorder
        self.enabled = enabled
        self._on_permission_denied = on_permission_denied

    async def on_connected(self, session: CallSession) -> None:
        if not self.enabled or self._recorder.is_active:
            return
        try:
            await self._recorder.start(owner=CaptureOwner.call)
        except PermissionDeniedError as exc:
            logger.warning("Auto-record skipped for %s: %s", session.call_id, exc.detail)
            if self._on_permission_denied is not None:
                self._on_permission_denied(exc)
        except AgriVoiceError as exc:
            logger.warning("Failed to start recording for %s: %s", session.call_id, exc.detail)
