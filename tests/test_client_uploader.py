import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from client.voicenotes.audio.types import AudioChunk
from client.voicenotes.errors import ServerRejected, TransportFailure, UploadNotAllowed
from client.voicenotes.services.logger import LogBuffer
from client.voicenotes.services.network import ApiClient
from client.voicenotes.services.uploader import LimitedRetry, NoRetry, UploadCoordinator
from client.voicenotes.store.session import ChunkCaptured, RecordingStarted, RecordingStopped, SessionStore
from client.voicenotes.store.settings_store import SettingsStore


def _store_with_chunks(count: int) -> SessionStore:
    store = SessionStore()
    store.dispatch(RecordingStarted())
    for seq in range(count):
        chunk = AudioChunk(
            payload=f"chunk-{seq}".encode(),
            duration_ms=10_000,
            captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            sequence=seq,
            content_type="audio/webm",
        )
        store.dispatch(ChunkCaptured(chunk))
    store.dispatch(RecordingStopped())
    return store


def _api(tmp_path, handler) -> ApiClient:
    settings = SettingsStore(tmp_path / "settings.json")
    settings.update(server_url="http://voicenotes.test", api_key="k")
    return ApiClient(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def _no_sleep(delay):  # noqa: ARG001
    return None


@pytest.mark.asyncio
async def test_all_chunks_uploaded_then_pruned(tmp_path):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-API-Key"] == "k"
        seen.append(request.url.path)
        return httpx.Response(200, json={"storageKey": f"key-{len(seen)}"})

    store = _store_with_chunks(3)
    coordinator = UploadCoordinator(store, _api(tmp_path, handler), LogBuffer())

    report = await coordinator.upload_all()

    assert report.ok and report.sent == 3
    assert seen == ["/chunk"] * 3
    assert store.state.chunks == ()
    assert store.state.uploaded_keys == ("key-1", "key-2", "key-3")
    assert not store.state.is_uploading
    assert store.state.last_error is None


@pytest.mark.asyncio
async def test_failure_midway_keeps_remaining_chunks(tmp_path):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 2:
            return httpx.Response(500, json={"error": "write_failed", "detail": "disk full"})
        return httpx.Response(200, json={"storageKey": f"key-{len(calls)}"})

    store = _store_with_chunks(3)
    coordinator = UploadCoordinator(store, _api(tmp_path, handler), LogBuffer())

    report = await coordinator.upload_all()

    state = store.state
    assert not report.ok and report.sent == 1
    assert "disk full" in report.error
    assert len(calls) == 2
    assert len(state.chunks) == 3
    assert [chunk.sent for chunk in state.chunks] == [True, False, False]
    assert state.chunks[0].storage_ref == "key-1"
    assert state.last_error == report.error
    assert not state.is_uploading


@pytest.mark.asyncio
async def test_transport_failure_aborts(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _store_with_chunks(2)
    coordinator = UploadCoordinator(store, _api(tmp_path, handler), LogBuffer())

    report = await coordinator.upload_all()

    assert not report.ok
    assert all(not chunk.sent for chunk in store.state.chunks)
    assert store.state.last_error


@pytest.mark.asyncio
async def test_upload_guards(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"storageKey": "k"})

    api = _api(tmp_path, handler)

    unfinished = SessionStore()
    unfinished.dispatch(RecordingStarted())
    with pytest.raises(UploadNotAllowed):
        await UploadCoordinator(unfinished, api, LogBuffer()).upload_all()

    empty = _store_with_chunks(0)
    with pytest.raises(UploadNotAllowed):
        await UploadCoordinator(empty, api, LogBuffer()).upload_all()


@pytest.mark.asyncio
async def test_second_upload_refused_while_in_flight(tmp_path):
    started = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        started.set()
        await release.wait()
        return httpx.Response(200, json={"storageKey": f"key-{len(calls)}"})

    store = _store_with_chunks(2)
    coordinator = UploadCoordinator(store, _api(tmp_path, handler), LogBuffer())

    first = asyncio.create_task(coordinator.upload_all())
    await asyncio.wait_for(started.wait(), timeout=5)
    assert store.state.is_uploading
    with pytest.raises(UploadNotAllowed):
        await coordinator.upload_all()

    release.set()
    report = await asyncio.wait_for(first, timeout=5)
    assert report.ok and report.sent == 2
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_limited_retry_recovers_from_transient_failure(tmp_path):
    calls = []
    delays = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, json={"detail": "busy"})
        return httpx.Response(200, json={"storageKey": f"key-{len(calls)}"})

    async def record_sleep(delay):
        delays.append(delay)

    store = _store_with_chunks(1)
    coordinator = UploadCoordinator(
        store,
        _api(tmp_path, handler),
        LogBuffer(),
        retry=LimitedRetry(attempts=2, base_delay=0.5),
        sleep=record_sleep,
    )

    report = await coordinator.upload_all()

    assert report.ok
    assert delays == [0.5]
    assert store.state.uploaded_keys == ("key-2",)


def test_retry_policies():
    transient = TransportFailure("reset")
    rejected = ServerRejected(400, "bad")
    policy = LimitedRetry(attempts=3, base_delay=1.0, max_delay=3.0)
    assert [policy.delay_for(attempt, transient) for attempt in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, None]
    assert policy.delay_for(1, rejected) is None
    assert policy.delay_for(1, ServerRejected(504)) == 1.0
    assert NoRetry().delay_for(1, transient) is None


@pytest.mark.asyncio
async def test_retry_gives_up_after_attempts(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    store = _store_with_chunks(1)
    coordinator = UploadCoordinator(
        store,
        _api(tmp_path, handler),
        LogBuffer(),
        retry=LimitedRetry(attempts=2),
        sleep=_no_sleep,
    )

    report = await coordinator.upload_all()

    assert not report.ok
    assert "502" in report.error
    assert store.state.unsent_chunks
