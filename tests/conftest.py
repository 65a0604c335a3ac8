"""Shared pytest fixtures for the AgriVoice test suite.

Provides a fake platform audio capture, an in-process fake backend served
through ``httpx.MockTransport``, fast-timer settings and storage helpers.
"""

import asyncio
import json
import re

import httpx
import pytest

from agrivoice.core.config import Settings
from agrivoice.services.audio.capture import AudioCapture, AudioMode
from agrivoice.services.storage.kv import MemoryKeyValueStore

# ---------------------------------------------------------------------------
# Audio capture
# ---------------------------------------------------------------------------


class FakeAudioCapture(AudioCapture):
    """Writes a small file per capture into a temp directory."""

    def __init__(self, temp_dir, granted: bool = True) -> None:
        self.temp_dir = temp_dir
        self.granted = granted
        self.permission_requests = 0
        self.modes: list[AudioMode] = []
        self.started = 0
        self.stopped = 0
        self.active = 0
        self.max_active = 0
        self.produce_file = True
        self.permission_gate: asyncio.Event | None = None
        self.start_error: Exception | None = None

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        if self.permission_gate is not None:
            await self.permission_gate.wait()
        return self.granted

    async def set_audio_mode(self, mode: AudioMode) -> None:
        self.modes.append(mode)

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)

    async def stop(self) -> str | None:
        self.stopped += 1
        self.active -= 1
        if not self.produce_file:
            return None
        path = self.temp_dir / f"capture_{self.stopped}.m4a"
        path.write_bytes(b"audio-data-" + str(self.stopped).encode())
        return str(path)


@pytest.fixture
def capture(tmp_path):
    temp_dir = tmp_path / "tmp_capture"
    temp_dir.mkdir()
    return FakeAudioCapture(temp_dir)


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


def multipart_field(request: httpx.Request, name: str) -> bytes:
    """Return the raw value of one multipart form field."""
    pattern = rb'name="' + name.encode() + rb'"[^\r\n]*\r\n(?:[^\r\n]+\r\n)*\r\n(.*?)\r\n--'
    match = re.search(pattern, request.content, re.DOTALL)
    assert match is not None, f"multipart field {name!r} not found"
    return match.group(1)


class FakeBackend:
    """Minimal stand-in for the farming-assistant backend."""

    def __init__(self) -> None:
        self.online = True
        self.upload_status = 200
        self.call_end_status = 200
        self.delay = 0.0
        self.requests: list[httpx.Request] = []
        self.cancelled = 0
        self._next_id = 1
        self.voice_answer = {
            "transcribed_text": "When should I irrigate rice?",
            "native_answer": "Irrigate every 3 days during tillering.",
            "detected_language": "en",
        }

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def uploaded_metadata(self) -> list[dict]:
        return [
            json.loads(multipart_field(r, "metadata"))
            for r in self.requests_to("/api/recordings/upload")
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if not self.online:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path
        if path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/calls/end":
            if self.call_end_status != 200:
                return httpx.Response(self.call_end_status, json={"message": "Call end rejected"})
            return httpx.Response(200, json={"received": True})
        if path == "/api/recordings/upload":
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, json={"message": "Storage quota exceeded"})
            remote_id = f"rec-{self._next_id}"
            self._next_id += 1
            return httpx.Response(200, json={"id": remote_id, "url": f"https://cdn.test/{remote_id}.m4a"})
        if path == "/speech/voice-query-json":
            return httpx.Response(200, json=self.voice_answer)
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def transport(backend):
    return httpx.MockTransport(backend)


# ---------------------------------------------------------------------------
# Settings and storage
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    """Settings with millisecond-scale timers and temp directories."""
    return Settings(
        _env_file=None,
        api_base_url_override="http://backend.test",
        recordings_dir=str(tmp_path / "recordings"),
        connect_delay=0.05,
        duration_tick=0.02,
        voice_query_duration=0.1,
        segment_restart_delay=0.0,
        health_poll_interval=60.0,
        user_id="farmer_1",
    )


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with tables, dispose after test."""
    from sqlalchemy.ext.asyncio import create_async_engine

    from agrivoice.services.storage.database import init_db

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def wait_until():
    """Poll *predicate* until true or fail after *timeout* seconds."""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait


@pytest.fixture
def multipart():
    """Expose ``multipart_field`` to tests."""
    return multipart_field


# ---------------------------------------------------------------------------
# Assembled client
# ---------------------------------------------------------------------------


@pytest.fixture
async def make_assistant(capture, settings, kv, transport):
    """Build started CallAssistants; *overrides* replace individual settings."""
    from agrivoice.app import CallAssistant

    created = []

    async def _make(on_permission_denied=None, **overrides):
        app = CallAssistant(
            capture,
            settings=settings.model_copy(update=overrides),
            kv=kv,
            transport=transport,
            on_permission_denied=on_permission_denied,
        )
        created.append(app)
        await app.start()
        return app

    yield _make
    for app in created:
        await app.aclose()


@pytest.fixture
async def assistant(make_assistant):
    """A started CallAssistant wired to the fake capture and fake backend."""
    return await make_assistant()


@pytest.fixture
def connect(assistant, wait_until):
    """Start a call and wait until it is connected."""
    from agrivoice.core.models import CallState

    async def _connect(language: str | None = None) -> None:
        await assistant.call.start(language=language)
        await wait_until(lambda: assistant.call.state == CallState.connected)

    return _connect
