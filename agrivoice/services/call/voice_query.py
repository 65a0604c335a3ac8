"""Bounded-duration voice questions during a connected call.

``VoiceQueryOrchestrator.ask`` records a fixed-length clip, submits it to
the speech endpoint and returns the transcribed question with its answer.
Only one voice query may be in flight; a call recording that is running
when the query starts is flushed first and resumed once the clip is done.
"""

import asyncio
import logging

from agrivoice.core.exceptions import AgriVoiceError, CallNotConnectedError, VoiceQueryInProgressError
from agrivoice.core.models import ApiResult, CallSession, CaptureOwner, VoiceQueryContext
from agrivoice.services.api.client import BackendClient
from agrivoice.services.audio.recorder import Recorder
from agrivoice.services.call.segments import SegmentCoordinator
from agrivoice.services.call.session import CallObserver, CallSessionMachine

logger = logging.getLogger(__name__)


class VoiceQueryOrchestrator(CallObserver):
    """Runs at most one voice query at a time during a connected call.

    Args:
        machine: Call session machine; queries require a connected call.
        recorder: Shared recorder.
        client: Backend client used for the voice-query endpoint.
        default_context: Context used when ``ask`` is called without one.
        segments: Segment coordinator, so an active segment is cut cleanly.
        clip_duration: Fixed clip length in seconds.
        content_type: MIME type of the recorded clip.
    """

    def __init__(
        self,
        machine: CallSessionMachine,
        recorder: Recorder,
        client: BackendClient,
        default_context: VoiceQueryContext,
        segments: SegmentCoordinator | None = None,
        clip_duration: float = 8.0,
        content_type: str = "audio/mp4",
    ) -> None:
        self._machine = machine
        self._recorder = recorder
        self._client = client
        self._default_context = default_context
        self._segments = segments
        self._clip_duration = clip_duration
        self._content_type = content_type

        self._in_flight = False
        self._abort = asyncio.Event()
        self._capture_released = asyncio.Event()
        self._capture_released.set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def ask(self, context: VoiceQueryContext | None = None) -> ApiResult:
        """Record a clip and submit it as a voice query.

        Returns:
            ``ApiResult`` whose ``data`` is a ``VoiceQueryAnswer`` on success.

        Raises:
            CallNotConnectedError: No connected call.
            VoiceQueryInProgressError: Another voice query is in flight.
        """
        if not self._machine.is_connected:
            raise CallNotConnectedError()
        if self._in_flight:
            raise VoiceQueryInProgressError()

        self._in_flight = True
        self._abort.clear()
        try:
            return await self._run(context or self._default_context)
        finally:
            self._in_flight = False

    async def _run(self, context: VoiceQueryContext) -> ApiResult:
        session = self._machine.session
        if session is not None:
            session.voice_query_used = True

        self._capture_released.clear()
        resume = False
        try:
            resume = await self._release_call_capture()
            if self._abort.is_set():
                return ApiResult.fail("Call ended before the voice query started", message="Voice query cancelled")
            try:
                await self._recorder.start(owner=CaptureOwner.voice_query)
            except AgriVoiceError as exc:
                logger.warning("Voice query capture not started: %s", exc.detail)
                return ApiResult.fail(exc.detail, message="Voice query failed")

            logger.info("Listening for voice query (%.1fs)", self._clip_duration)
            aborted = await self._wait_for_clip()
            uri = await self._recorder.stop()
        finally:
            self._capture_released.set()
            if resume:
                await self._machine.resume_recording()

        if aborted:
            return ApiResult.fail("Call ended before the voice query finished", message="Voice query cancelled")
        if uri is None:
            return ApiResult.fail("No audio captured", message="Voice query failed")

        result = await self._client.send_voice_query(uri, context, self._content_type)
        if result.success:
            logger.info("Voice query answered: %r", result.data.transcribed_text)
        return result

    async def _wait_for_clip(self) -> bool:
        """Wait out the fixed clip duration; True if the call ended first."""
        try:
            await asyncio.wait_for(self._abort.wait(), timeout=self._clip_duration)
        except TimeoutError:
            return False
        return True

    async def _release_call_capture(self) -> bool:
        """Flush a running call capture so the clip can use the recorder."""
        if self._recorder.owner != CaptureOwner.call:
            return False
        if self._segments is not None and self._segments.active:
            await self._segments.send_segment(restart=False)
        else:
            await self._machine.flush_recording()
        return True

    # -- observer hooks --

    async def on_ending(self, session: CallSession) -> None:
        if self._in_flight:
            self._abort.set()
            await self._capture_released.wait()
