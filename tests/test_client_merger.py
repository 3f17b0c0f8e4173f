import httpx
import pytest

from client.voicenotes.errors import MergeNotAllowed
from client.voicenotes.services.logger import LogBuffer
from client.voicenotes.services.merger import MergeRequester
from client.voicenotes.services.network import ApiClient
from client.voicenotes.store.session import RecordingSession, SessionStore
from client.voicenotes.store.settings_store import SettingsStore


def _api(tmp_path, handler) -> ApiClient:
    settings = SettingsStore(tmp_path / "settings.json")
    settings.update(server_url="http://voicenotes.test")
    return ApiClient(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _uploaded_store(*keys: str) -> SessionStore:
    return SessionStore(RecordingSession(uploaded_keys=tuple(keys), recording_finished=True))


@pytest.mark.asyncio
async def test_merge_downloads_result(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/merge":
            return httpx.Response(200, json={"mergedKey": "merged-1.webm", "size": 6})
        assert request.url.path == "/object/merged-1.webm"
        return httpx.Response(200, content=b"AAABBC")

    store = _uploaded_store("a.webm", "b.webm")
    report = await MergeRequester(store, _api(tmp_path, handler), LogBuffer()).merge()

    assert report.ok
    assert report.merged_key == "merged-1.webm"
    assert report.size == 6
    assert store.state.merged_result == b"AAABBC"
    assert store.state.uploaded_keys == ()
    assert not store.state.is_merging


@pytest.mark.asyncio
async def test_merge_failure_keeps_keys(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "merge_process_unavailable", "detail": "Cannot start 'ffmpeg'"})

    store = _uploaded_store("a.webm")
    report = await MergeRequester(store, _api(tmp_path, handler), LogBuffer()).merge()

    assert not report.ok
    assert "ffmpeg" in report.error
    assert store.state.uploaded_keys == ("a.webm",)
    assert store.state.last_error == report.error
    assert not store.state.is_merging


@pytest.mark.asyncio
async def test_failed_download_is_retried_without_remerging(tmp_path):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.url.path == "/merge":
            if len(calls) > 1:
                return httpx.Response(404, json={"error": "not_found", "detail": "a.webm"})
            return httpx.Response(200, json={"mergedKey": "merged-1.webm", "size": 6})
        if len(calls) == 2:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, content=b"AAABBC")

    store = _uploaded_store("a.webm", "b.webm")
    requester = MergeRequester(store, _api(tmp_path, handler), LogBuffer())

    first = await requester.merge()
    assert not first.ok
    assert first.merged_key == "merged-1.webm"
    assert store.state.merged_key == "merged-1.webm"
    assert store.state.uploaded_keys == ()
    assert store.state.awaiting_download

    second = await requester.merge()
    assert second.ok, second.error
    assert store.state.merged_result == b"AAABBC"
    assert calls == [
        ("POST", "/merge"),
        ("GET", "/object/merged-1.webm"),
        ("GET", "/object/merged-1.webm"),
    ]


@pytest.mark.asyncio
async def test_merge_guards(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    api = _api(tmp_path, handler)
    with pytest.raises(MergeNotAllowed):
        await MergeRequester(SessionStore(), api, LogBuffer()).merge()
    busy = SessionStore(RecordingSession(uploaded_keys=("a",), is_uploading=True))
    with pytest.raises(MergeNotAllowed):
        await MergeRequester(busy, api, LogBuffer()).merge()
