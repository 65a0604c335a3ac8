"""End-to-end call flows through CallAssistant against the fake backend."""

import json

from sqlalchemy.ext.asyncio import async_sessionmaker

from agrivoice.app import CallAssistant
from agrivoice.core.models import CallState, UploadStatus
from agrivoice.services.storage.kv import SQLKeyValueStore


async def _run_call(app, wait_until, seconds: int = 1, language: str | None = None) -> str:
    await app.call.start(language=language)
    await wait_until(lambda: app.call.state == CallState.connected)
    call_id = app.call.call_id
    await wait_until(lambda: app.call.duration_seconds >= seconds)
    await app.call.end()
    return call_id


async def test_offline_call_then_resubmit(make_assistant, backend, wait_until):
    app = await make_assistant()
    backend.online = False
    await app.monitor.check()

    call_id = await _run_call(app, wait_until, seconds=2, language="te")

    (recording,) = app.store.list()
    assert recording.upload_status == UploadStatus.pending
    assert recording.call_id == call_id

    backend.online = True
    assert await app.monitor.check() is True
    results = await app.uploader.resubmit_all()

    assert results[recording.id].success
    stored = app.store.get(recording.id)
    assert stored.upload_status == UploadStatus.uploaded
    assert stored.remote_url == "https://cdn.test/rec-1.m4a"
    (metadata,) = backend.uploaded_metadata()
    assert metadata["callId"] == call_id
    assert metadata["language"] == "te"


async def test_recordings_survive_restart(make_assistant, kv, wait_until):
    first = await make_assistant()
    await _run_call(first, wait_until)
    await _run_call(first, wait_until)
    saved = first.store.list()
    assert len(saved) == 2

    second = await make_assistant()
    assert [r.id for r in second.store.list()] == [r.id for r in saved]
    assert all(r.upload_status == UploadStatus.uploaded for r in second.store.list())
    assert json.loads(await kv.get_item("savedRecordings"))[0]["localPath"] == saved[0].local_path


async def test_auto_record_preference_persists(make_assistant, kv, capture, wait_until):
    first = await make_assistant()
    await first.set_auto_record(False)
    assert await kv.get_item("autoRecord") == "false"

    second = await make_assistant()
    assert second.auto_record.enabled is False
    await _run_call(second, wait_until)
    assert capture.started == 0


async def test_segmented_call_with_voice_query(make_assistant, backend, wait_until):
    app = await make_assistant(segment_mode=True)
    await app.call.start(language="hi")
    await wait_until(lambda: app.call.state == CallState.connected)
    call_id = app.call.call_id

    await app.segments.send_segment()
    answer = await app.voice_query.ask()
    await app.segments.send_segment()
    await app.call.end()
    await app.segments.drain_uploads()

    assert answer.success
    recordings = app.store.list()
    assert [r.segment_index for r in recordings] == [0, 1, 2, None]
    assert all(r.call_id == call_id for r in recordings)
    assert all(r.upload_status == UploadStatus.uploaded for r in recordings)

    body = json.loads(backend.requests_to("/api/calls/end")[0].content)
    assert body["metadata"]["totalSegments"] == 3
    assert body["metadata"]["hadVoiceQuery"] is True


async def test_sqlite_backed_store(capture, settings, transport, db_engine, wait_until):
    kv = SQLKeyValueStore(async_sessionmaker(db_engine, expire_on_commit=False))
    app = CallAssistant(capture, settings=settings, kv=kv, transport=transport)
    await app.start()
    try:
        await _run_call(app, wait_until)
        await app.set_auto_record(False)
    finally:
        await app.aclose()

    reloaded = CallAssistant(capture, settings=settings, kv=kv, transport=transport)
    await reloaded.start()
    try:
        assert len(reloaded.store.list()) == 1
        assert reloaded.auto_record.enabled is False
    finally:
        await reloaded.aclose()


async def test_default_database_file(capture, settings, transport, tmp_path, wait_until):
    db_path = tmp_path / "state" / "agrivoice.db"
    s = settings.model_copy(update={"database_url": f"sqlite+aiosqlite:///{db_path}"})

    app = CallAssistant(capture, settings=s, transport=transport)
    await app.start()
    try:
        await _run_call(app, wait_until)
    finally:
        await app.aclose()
    assert db_path.exists()

    reloaded = CallAssistant(capture, settings=s, transport=transport)
    await reloaded.start()
    try:
        (recording,) = reloaded.store.list()
        assert recording.upload_status == UploadStatus.uploaded
    finally:
        await reloaded.aclose()
