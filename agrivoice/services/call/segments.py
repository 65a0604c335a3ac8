"""Segmented sending of a connected call's audio.

While active, ``SegmentCoordinator.send_segment`` cuts the running call
capture: stop -> save as segment N -> queue its upload (when the backend is
reachable) -> start segment N+1. Segment indices grow monotonically per
session and are never reused, even when an upload fails.
"""

import asyncio
import logging

from agrivoice.core.exceptions import AgriVoiceError
from agrivoice.core.models import CallSession, CaptureOwner, Recording
from agrivoice.services.audio.recorder import Recorder
from agrivoice.services.call.session import CallObserver, CallSessionMachine
from agrivoice.services.connectivity import ConnectivityMonitor
from agrivoice.services.scheduler import Scheduler, TimerHandle
from agrivoice.services.uploader import RecordingUploader

logger = logging.getLogger(__name__)


class SegmentCoordinator(CallObserver):
    """Cuts the call capture into independently uploaded segments.

    Args:
        machine: Call session machine providing the current session.
        recorder: Shared recorder.
        uploader: Uploads each finished segment.
        monitor: Connectivity monitor consulted before each upload.
        scheduler: Owns the automatic cutting timer.
        enabled: Whether segment mode is on for new calls.
        interval: Seconds between automatic cuts (0 disables the timer).
        restart_delay: Pause between stopping one segment and starting the next.
    """

    def __init__(
        self,
        machine: CallSessionMachine,
        recorder: Recorder,
        uploader: RecordingUploader,
        monitor: ConnectivityMonitor,
        scheduler: Scheduler,
        enabled: bool = False,
        interval: float = 0.0,
        restart_delay: float = 0.1,
    ) -> None:
        self._machine = machine
        self._recorder = recorder
        self._uploader = uploader
        self._monitor = monitor
        self._scheduler = scheduler
        self._enabled = enabled
        self._interval = interval
        self._restart_delay = restart_delay

        self._active = False
        self._next_index = 0
        self._lock = asyncio.Lock()
        self._handle: TimerHandle | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def active(self) -> bool:
        return self._active and self._machine.is_connected

    @property
    def next_index(self) -> int:
        return self._next_index

    def enable(self) -> None:
        """Turn segment mode on; takes effect immediately during a call."""
        self._enabled = True
        if self._machine.is_connected and not self._active:
            self._activate()

    def disable(self) -> None:
        self._enabled = False
        self._deactivate()

    # -- observer hooks --

    async def on_connected(self, session: CallSession) -> None:
        self._next_index = 0
        if self._enabled:
            self._activate()
            if not self._recorder.is_active:
                await self._start_capture()

    async def on_ending(self, session: CallSession) -> None:
        self._active = False
        # Let an in-flight cut finish before the timer goes away
        async with self._lock:
            self._cancel_timer()

    async def on_idle(self) -> None:
        self._deactivate()
        self._next_index = 0

    # -- segment cycle --

    async def send_segment(self, restart: bool = True) -> Recording | None:
        """Cut the current capture into the next segment.

        Args:
            restart: Start recording the following segment right away.

        Returns:
            The saved segment, or None if segment mode is inactive or
            nothing was recording.
        """
        async with self._lock:
            session = self._machine.session
            if not self.active or session is None:
                logger.debug("Segment send ignored: segment mode inactive")
                return None
            if self._recorder.owner != CaptureOwner.call:
                logger.debug("Segment send ignored: no active call capture")
                return None

            index = self._next_index
            self._next_index += 1
            segment = await self._recorder.stop_and_save(
                duration_seconds=session.duration_seconds,
                language=session.language,
                call_id=session.call_id,
                segment_index=index,
            )
            if segment is not None:
                session.segments.append(segment)
                logger.info("Segment %d saved for %s", index, session.call_id)
                if self._monitor.is_reachable:
                    self._uploader.upload_in_background(segment)
                else:
                    logger.info("Backend offline, segment %d kept for later upload", index)
            if restart:
                await self._restart_capture()
        return segment

    async def drain_uploads(self) -> None:
        """Wait for every background upload started so far."""
        await self._uploader.drain()

    async def _restart_capture(self) -> None:
        await asyncio.sleep(self._restart_delay)
        if self.active:
            await self._start_capture()

    async def _start_capture(self) -> None:
        try:
            await self._recorder.start(owner=CaptureOwner.call)
        except AgriVoiceError as exc:
            logger.warning("Could not start next segment: %s", exc.detail)

    async def _on_interval(self) -> None:
        await self.send_segment()

    def _activate(self) -> None:
        self._active = True
        if self._interval > 0 and self._handle is None:
            self._handle = self._scheduler.call_every(
                self._interval, self._on_interval, name="segment-cycle"
            )
        logger.info("Segment mode active")

    def _deactivate(self) -> None:
        self._active = False
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
