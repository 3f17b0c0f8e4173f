import asyncio
from pathlib import Path

import httpx
import pytest

from client.voicenotes.app import VoiceNotesApp, build_parser
from client.voicenotes.config import MAX_CHUNKS
from client.voicenotes.errors import CaptureStateError, SaveFailed
from src.api.deps.auth import reset_auth_service_cache


class ScriptedDevice:
    content_type = "audio/webm"

    def __init__(self):
        self.count = 0
        self.active = False
        self._inactive = asyncio.Event()

    async def open(self):
        self.active = True

    def begin_segment(self):
        self.count += 1

    async def flush(self):
        return f"<seg{self.count}>".encode()

    @property
    def is_active(self):
        return self.active

    async def wait_inactive(self):
        await self._inactive.wait()

    def release(self):
        self.active = False


@pytest.fixture()
def server(tmp_path, concat_command):
    from src.api.app import create_app
    from src.api.routers.audio import get_merge_engine
    from src.api.services.merge_engine import MergeEngine
    from src.api.services.storage_service import StorageService
    from src.api.settings import APISettings, get_settings

    get_settings.cache_clear()  # type: ignore
    reset_auth_service_cache()
    settings = APISettings(api_keys=["test-key"], data_dir=str(tmp_path / "server"))
    storage = StorageService.from_settings(settings)
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_merge_engine] = lambda: MergeEngine(
        storage,
        scratch_dir=settings.scratch_path,
        command=concat_command,
    )
    return app, storage


@pytest.mark.asyncio
async def test_record_upload_merge_save(tmp_path, server):
    asgi_app, storage = server
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=asgi_app))
    app = VoiceNotesApp(
        tmp_path / "client",
        device=ScriptedDevice(),
        http_client=http_client,
        segment_seconds=0.02,
    )
    app.settings_store.update(
        server_url="http://testserver",
        api_key="test-key",
        save_dir=str(tmp_path / "saved"),
    )

    await app.start_recording()
    await asyncio.wait_for(app.wait_recording_finished(), timeout=5)
    assert len(app.state.chunks) == MAX_CHUNKS
    expected = b"".join(chunk.payload for chunk in app.state.chunks)

    upload = await app.upload()
    assert upload.ok and upload.sent == MAX_CHUNKS
    chunk_keys = list(app.state.uploaded_keys)
    assert all(storage.exists(key) for key in chunk_keys)

    merged = await app.merge()
    assert merged.ok, merged.error
    assert merged.size == len(expected)
    assert app.state.merged_result == expected
    assert not any(storage.exists(key) for key in chunk_keys)

    saved = await app.save()
    assert saved.success and saved.strategy == "local"
    assert Path(saved.local_path).parent == tmp_path / "saved"
    assert Path(saved.local_path).read_bytes() == expected

    await app.delete_remote(merged.merged_key)
    assert not storage.exists(merged.merged_key)

    await app.close()
    assert app.state.chunks == ()


@pytest.mark.asyncio
async def test_save_without_merge_refused(tmp_path):
    app = VoiceNotesApp(tmp_path, device=ScriptedDevice())
    with pytest.raises(SaveFailed):
        await app.save()
    await app.close()


def test_cli_parser_defaults():
    args = build_parser().parse_args(["--server", "http://localhost:8000", "--segment-seconds", "2.5"])
    assert args.server == "http://localhost:8000"
    assert args.segment_seconds == 2.5
    assert args.api_key is None


@pytest.mark.asyncio
async def test_request_stop_tolerates_capture_already_finished(tmp_path, monkeypatch):
    app = VoiceNotesApp(tmp_path, device=ScriptedDevice(), segment_seconds=10)
    await app.start_recording()

    async def finished_meanwhile():
        raise CaptureStateError("Capture is not running")

    monkeypatch.setattr(app.recorder, "stop", finished_meanwhile)
    task = app.request_stop()
    assert task is not None
    await task
    assert task.exception() is None

    await app.close()
    assert app.request_stop() is None
