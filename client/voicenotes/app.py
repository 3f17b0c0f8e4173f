"""Command-line entrypoint and coordinator for the VoiceNotes client."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

import httpx

from .audio.device import CaptureDevice, SoundDeviceCapture
from .audio.recorder import CaptureController, CaptureState
from .config import CONFIG
from .errors import CaptureError, CaptureStateError, MergeNotAllowed, SaveFailed, UploadNotAllowed
from .services.logger import LogBuffer
from .services.merger import MergeReport, MergeRequester
from .services.network import ApiClient
from .services.save_strategies import (
    LocalDirectoryStrategy,
    SaveResult,
    ServerUploadStrategy,
    recording_filename,
    save_recording,
)
from .services.uploader import LimitedRetry, NoRetry, RetryPolicy, UploadCoordinator, UploadReport
from .store.session import RecordingSession, SessionReset, SessionStore
from .store.settings_store import SettingsStore

_SUFFIXES = {"audio/flac": ".flac", "audio/wav": ".wav", "audio/webm": ".webm"}


class VoiceNotesApp:
    """Wires capture, upload, merge and save around one recording session."""

    def __init__(
        self,
        base_dir: Path,
        *,
        device: Optional[CaptureDevice] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        segment_seconds: float | None = None,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.settings_store = SettingsStore(self.base_dir / CONFIG.settings_file)
        self.logger = LogBuffer(CONFIG.log_history)
        self.session = SessionStore()
        self.api_client = ApiClient(self.settings_store, client=http_client)
        self.device = device or SoundDeviceCapture()
        self.recorder = CaptureController(
            self.session,
            self.device,
            self.logger,
            segment_seconds=segment_seconds if segment_seconds is not None else CONFIG.chunk_seconds,
        )
        self.uploader = UploadCoordinator(self.session, self.api_client, self.logger, retry=self._retry_policy())
        self.merger = MergeRequester(self.session, self.api_client, self.logger)
        self._stop_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> RecordingSession:
        return self.session.state

    async def start_recording(self) -> None:
        await self.recorder.start()

    async def stop_recording(self) -> None:
        await self.recorder.stop()

    def request_stop(self) -> Optional[asyncio.Task]:
        """Schedule a stop from synchronous code such as a signal handler."""

        if self.recorder.state is not CaptureState.CAPTURING:
            return None
        task = asyncio.get_running_loop().create_task(self._stop_quietly())
        self._stop_tasks.add(task)
        task.add_done_callback(self._stop_tasks.discard)
        return task

    async def _stop_quietly(self) -> None:
        # the capture loop may reach its chunk limit before this task runs
        with contextlib.suppress(CaptureStateError):
            await self.recorder.stop()

    async def wait_recording_finished(self) -> None:
        await self.recorder.wait_stopped()

    async def upload(self) -> UploadReport:
        return await self.uploader.upload_all()

    async def merge(self) -> MergeReport:
        return await self.merger.merge()

    async def save(self) -> SaveResult:
        data = self.state.merged_result
        if data is None:
            raise SaveFailed("No merged recording to save")
        content_type = self.device.content_type
        settings = self.settings_store.get()
        save_dir = settings.save_dir or str(self.base_dir / CONFIG.recordings_dir)
        strategies = [LocalDirectoryStrategy(save_dir), ServerUploadStrategy(self.api_client)]
        return await save_recording(
            data,
            strategies,
            filename=recording_filename(_SUFFIXES.get(content_type, ".bin")),
            content_type=content_type,
            logger=self.logger,
        )

    async def delete_remote(self, key: str) -> None:
        await self.api_client.delete_object(key)
        self.logger.add(f"Deleted remote object {key}")

    async def reset(self) -> None:
        if self.recorder.state is CaptureState.CAPTURING:
            await self.recorder.close()
        self.session.dispatch(SessionReset())
        self.logger.add("Session reset")

    async def close(self) -> None:
        await self.recorder.close()
        self.session.dispatch(SessionReset())
        await self.api_client.aclose()

    def _retry_policy(self) -> RetryPolicy:
        settings = self.settings_store.get()
        if settings.upload_retries > 0:
            return LimitedRetry(attempts=settings.upload_retries, base_delay=settings.retry_delay)
        return NoRetry()


async def _record_once(app: VoiceNotesApp) -> int:
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, app.request_stop)

    try:
        await app.start_recording()
    except (CaptureError, CaptureStateError) as exc:
        print(f"Cannot record: {exc}", file=sys.stderr)
        return 1
    print(f"Recording up to {CONFIG.max_chunks} x {app.recorder.segment_seconds:g}s (Ctrl-C to stop)")
    await app.wait_recording_finished()
    with contextlib.suppress(NotImplementedError):
        loop.remove_signal_handler(signal.SIGINT)

    state = app.state
    if state.last_error:
        print(f"Recording ended with error: {state.last_error}", file=sys.stderr)
    print(f"Captured {len(state.chunks)} chunk(s)")

    try:
        report = await app.upload()
    except UploadNotAllowed as exc:
        print(f"Nothing uploaded: {exc}", file=sys.stderr)
        return 1
    if not report.ok:
        print(report.error, file=sys.stderr)
        return 1

    try:
        merged = await app.merge()
    except MergeNotAllowed as exc:
        print(f"Merge skipped: {exc}", file=sys.stderr)
        return 1
    if not merged.ok:
        print(merged.error, file=sys.stderr)
        return 1
    print(f"Merged recording: {merged.merged_key} ({merged.size} bytes)")

    try:
        saved = await app.save()
    except SaveFailed as exc:
        print(f"Save skipped: {exc}", file=sys.stderr)
        return 1
    if not saved.success:
        print(f"Save failed: {saved.error}", file=sys.stderr)
        return 1
    print(f"Saved via {saved.strategy}: {saved.local_path or saved.key}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record a chunked voice note and merge it on the server.")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path.home() / ".voicenotes",
        help="Directory for settings and saved recordings (default: ~/.voicenotes).",
    )
    parser.add_argument("--server", help="Backend base URL; stored in settings when given.")
    parser.add_argument("--api-key", help="API key sent as X-API-Key; stored in settings when given.")
    parser.add_argument("--save-dir", help="Directory for the merged recording; stored in settings when given.")
    parser.add_argument(
        "--segment-seconds",
        type=float,
        default=None,
        help=f"Chunk length in seconds (default: {CONFIG.chunk_seconds}).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


async def _main_async(args: argparse.Namespace) -> int:
    app = VoiceNotesApp(args.data_dir, segment_seconds=args.segment_seconds)
    updates = {
        key: value
        for key, value in (("server_url", args.server), ("api_key", args.api_key), ("save_dir", args.save_dir))
        if value is not None
    }
    if updates:
        app.settings_store.update(**updates)
    try:
        return await _record_once(app)
    finally:
        await app.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    return asyncio.run(_main_async(args))


if __name__ == "__main__":
    sys.exit(main())
