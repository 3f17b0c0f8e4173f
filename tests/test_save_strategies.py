import httpx
import pytest

from client.voicenotes.services.logger import LogBuffer
from client.voicenotes.services.network import ApiClient
from client.voicenotes.services.save_strategies import (
    LocalDirectoryStrategy,
    SaveResult,
    ServerUploadStrategy,
    recording_filename,
    save_recording,
)
from client.voicenotes.store.settings_store import SettingsStore


class FailingStrategy:
    name = "broken"

    def is_available(self):
        return True

    async def save(self, data, filename, content_type):
        return SaveResult(success=False, strategy=self.name, error="disk on fire")


def _api(tmp_path, handler, server_url="http://voicenotes.test"):
    settings = SettingsStore(tmp_path / "settings.json")
    settings.update(server_url=server_url)
    return ApiClient(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_recording_filename():
    name = recording_filename(".webm")
    assert name.startswith("rec-") and name.endswith(".webm")


def test_local_strategy_availability(tmp_path):
    assert LocalDirectoryStrategy(tmp_path / "new" / "dir").is_available()
    assert not LocalDirectoryStrategy(None).is_available()


@pytest.mark.asyncio
async def test_local_strategy_writes_file(tmp_path):
    target_dir = tmp_path / "recordings"
    result = await save_recording(
        b"merged",
        [LocalDirectoryStrategy(target_dir)],
        filename="rec-1.webm",
        logger=LogBuffer(),
    )
    assert result.success
    assert result.strategy == "local"
    assert (target_dir / "rec-1.webm").read_bytes() == b"merged"


@pytest.mark.asyncio
async def test_falls_back_to_server_upload(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"storageKey": "1700-abc-rec.webm"})

    logger = LogBuffer()
    result = await save_recording(
        b"merged",
        [LocalDirectoryStrategy(None), FailingStrategy(), ServerUploadStrategy(_api(tmp_path, handler))],
        filename="rec.webm",
        content_type="audio/webm",
        logger=logger,
    )
    assert result.success
    assert result.strategy == "server"
    assert result.key == "1700-abc-rec.webm"
    assert any("broken failed" in line for line in logger.get())


@pytest.mark.asyncio
async def test_all_strategies_fail(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    result = await save_recording(
        b"merged",
        [FailingStrategy(), ServerUploadStrategy(_api(tmp_path, handler, server_url=""))],
    )
    assert not result.success
    assert result.error == "broken: disk on fire"


@pytest.mark.asyncio
async def test_no_strategy_available():
    result = await save_recording(b"x", [LocalDirectoryStrategy(None)])
    assert not result.success
    assert result.error == "No save strategy available"


@pytest.mark.asyncio
async def test_empty_log_buffer_still_records_outcome(tmp_path):
    logger = LogBuffer()
    assert len(logger) == 0

    await save_recording(
        b"merged",
        [LocalDirectoryStrategy(None), LocalDirectoryStrategy(tmp_path)],
        filename="rec.webm",
        logger=logger,
    )

    lines = logger.get()
    assert any("unavailable" in line for line in lines)
    assert any("saved via local" in line for line in lines)
