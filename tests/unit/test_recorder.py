"""Tests for Recorder: capture exclusivity, permissions and local persistence."""

import re
from pathlib import Path

import pytest

from agrivoice.core.exceptions import (
    CaptureFailedError,
    PermissionDeniedError,
    RecordingAlreadyActiveError,
)
from agrivoice.core.models import CaptureOwner, UploadStatus
from agrivoice.services.audio.capture import CALL_AUDIO_MODE
from agrivoice.services.audio.recorder import Recorder
from agrivoice.services.storage.recording_store import RecordingStore


@pytest.fixture
def store(kv):
    return RecordingStore(kv)


@pytest.fixture
def recorder(capture, store, tmp_path):
    return Recorder(capture, store, tmp_path / "recordings", audio_format="m4a")


class TestStartStop:
    async def test_stop_without_start_returns_none(self, recorder, capture):
        assert await recorder.stop() is None
        assert capture.stopped == 0

    async def test_start_then_stop(self, recorder, capture):
        await recorder.start()
        assert recorder.is_active
        assert recorder.owner == CaptureOwner.call
        assert capture.modes == [CALL_AUDIO_MODE]

        uri = await recorder.stop()

        assert uri is not None and Path(uri).exists()
        assert not recorder.is_active

    async def test_second_start_is_rejected(self, recorder, capture):
        await recorder.start()
        with pytest.raises(RecordingAlreadyActiveError):
            await recorder.start(owner=CaptureOwner.voice_query)
        assert capture.max_active == 1
        assert recorder.owner == CaptureOwner.call

    async def test_repeated_pairs_never_overlap(self, recorder, capture):
        for _ in range(5):
            await recorder.start()
            await recorder.stop()
        assert capture.started == 5
        assert capture.max_active == 1

    async def test_capture_without_file(self, recorder, capture):
        capture.produce_file = False
        await recorder.start()
        assert await recorder.stop() is None
        assert not recorder.is_active

    async def test_platform_start_failure(self, recorder, capture):
        capture.start_error = RuntimeError("mic busy")
        with pytest.raises(CaptureFailedError) as exc_info:
            await recorder.start()

        assert exc_info.value.code == "CAPTURE_FAILED"
        assert "mic busy" in exc_info.value.detail
        assert not recorder.is_active

        capture.start_error = None
        await recorder.start()
        assert recorder.owner == CaptureOwner.call


class TestPermission:
    async def test_denied_permission_blocks_start(self, recorder, capture):
        capture.granted = False
        with pytest.raises(PermissionDeniedError):
            await recorder.start()
        assert capture.started == 0
        assert not recorder.is_active

    async def test_can_request_again_after_denial(self, recorder, capture):
        capture.granted = False
        assert await recorder.request_permission() is False
        capture.granted = True
        await recorder.start()
        assert recorder.is_active

    async def test_granted_permission_is_remembered(self, recorder, capture):
        await recorder.start()
        await recorder.stop()
        await recorder.start()
        assert capture.permission_requests == 1


class TestStopAndSave:
    async def test_saves_file_and_appends_recording(self, recorder, store, tmp_path):
        await recorder.start()
        recording = await recorder.stop_and_save(duration_seconds=17, language="ta", call_id="call_9")

        assert recording is not None
        assert re.fullmatch(r"call_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}_ta\.m4a", recording.filename)
        saved = Path(recording.local_path)
        assert saved.parent == (tmp_path / "recordings").resolve()
        assert saved.read_bytes() == b"audio-data-1"
        assert recording.size_bytes == len(b"audio-data-1")
        assert recording.duration_seconds == 17
        assert recording.id == str(recording.created_at_millis)
        assert recording.upload_status == UploadStatus.pending
        assert store.list() == [recording]

    async def test_segment_naming(self, recorder):
        await recorder.start()
        recording = await recorder.stop_and_save(duration_seconds=5, language="en", segment_index=2)

        assert recording.filename.endswith("_seg2_en.m4a")
        assert recording.id.endswith("_seg2")
        assert recording.is_segment

    async def test_nothing_recording(self, recorder, store):
        assert await recorder.stop_and_save(duration_seconds=1, language="en") is None
        assert store.list() == []

    async def test_missing_temp_file_is_not_indexed(self, recorder, store, tmp_path):
        result = await recorder.save(str(tmp_path / "gone.m4a"), 3, "en")
        assert result is None
        assert store.list() == []

    async def test_copy_failure_keeps_temp_path(self, capture, store, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")
        recorder = Recorder(capture, store, blocker / "recordings")

        await recorder.start()
        recording = await recorder.stop_and_save(duration_seconds=2, language="kn")

        assert recording is not None
        assert Path(recording.local_path).parent == capture.temp_dir
        assert store.list() == [recording]
