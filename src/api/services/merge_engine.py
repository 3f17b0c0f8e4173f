"""Concatenate stored chunks into one object through an ffmpeg subprocess."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from ..errors import MergeProcessFailed, MergeProcessUnavailable, NoChunksToMerge
from ..metrics import MERGE_COUNTER, MERGE_DURATION
from ..settings import APISettings
from .storage_service import MERGED_PREFIX, StorageService

LOGGER = logging.getLogger("voicenotes.merge")

STDERR_TAIL_CHARS = 2000

ConcatCommand = Callable[[Sequence[Path], Path], list[str]]


def ffmpeg_concat_args(binary: str = "ffmpeg") -> ConcatCommand:
    """Return a command builder for stream-copy concatenation.

    The ``concat:`` protocol joins the inputs at the byte level before
    demuxing, and ``-c copy`` keeps the original encoding untouched.
    """

    def build(inputs: Sequence[Path], output: Path) -> list[str]:
        return [
            binary,
            "-hide_banner",
            "-nostdin",
            "-loglevel",
            "error",
            "-y",
            "-i",
            "concat:" + "|".join(str(path) for path in inputs),
            "-c",
            "copy",
            str(output),
        ]

    return build


@dataclass(slots=True)
class MergeResult:
    key: str
    size: int
    source_keys: list[str]


class MergeEngine:
    """All-or-nothing merge of an ordered list of storage keys."""

    def __init__(
        self,
        storage: StorageService,
        *,
        scratch_dir: Path | str,
        command: ConcatCommand | None = None,
        timeout: float | None = None,
    ) -> None:
        self.storage = storage
        self.scratch_dir = Path(scratch_dir)
        self.command = command or ffmpeg_concat_args()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: APISettings, storage: StorageService) -> "MergeEngine":
        return cls(
            storage,
            scratch_dir=settings.scratch_path,
            command=ffmpeg_concat_args(settings.ffmpeg_binary),
            timeout=settings.merge_timeout_sec,
        )

    async def merge(self, keys: Sequence[str]) -> MergeResult:
        keys = list(keys)
        if not keys:
            raise NoChunksToMerge()

        start_time = time.perf_counter()
        try:
            payloads = await self._fetch_all(keys)
            merged = await self._concat(keys, payloads)
            merged_key = self.storage.put(
                merged,
                f"recording{Path(keys[0]).suffix}",
                prefix=MERGED_PREFIX,
            )
        except Exception:
            MERGE_COUNTER.labels(status="error").inc()
            MERGE_DURATION.observe(time.perf_counter() - start_time)
            raise

        for key in keys:
            self.storage.discard(key)
        MERGE_COUNTER.labels(status="success").inc()
        MERGE_DURATION.observe(time.perf_counter() - start_time)
        LOGGER.info("Merged %d chunk(s) into %s (%d bytes)", len(keys), merged_key, len(merged))
        return MergeResult(key=merged_key, size=len(merged), source_keys=keys)

    async def _fetch_all(self, keys: list[str]) -> list[bytes]:
        # gather keeps the result order aligned with ``keys``
        return await asyncio.gather(*(asyncio.to_thread(self.storage.get, key) for key in keys))

    async def _concat(self, keys: list[str], payloads: list[bytes]) -> bytes:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="merge-", dir=self.scratch_dir))
        try:
            inputs: list[Path] = []
            for index, (key, payload) in enumerate(zip(keys, payloads)):
                part = workdir / f"part-{index:04d}{Path(key).suffix}"
                part.write_bytes(payload)
                inputs.append(part)
            output = workdir / f"merged{Path(keys[0]).suffix}"
            await self._run(self.command(inputs, output))
            if not output.exists():
                raise MergeProcessFailed(0, "concat process produced no output")
            return output.read_bytes()
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def _run(self, cmd: list[str]) -> None:
        LOGGER.debug("Running concat command: %s", cmd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            LOGGER.error("Concat binary unavailable (%s): %s", cmd[0], exc)
            raise MergeProcessUnavailable(f"Cannot start '{cmd[0]}': {exc}") from exc

        try:
            _, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            LOGGER.error("Concat process timed out after %.1fs", self.timeout)
            raise MergeProcessFailed(proc.returncode, "timed out") from exc

        stderr = stderr_raw.decode("utf-8", errors="replace").strip() if stderr_raw else ""
        if proc.returncode != 0:
            LOGGER.error("Concat process exited with %s: %s", proc.returncode, stderr[-STDERR_TAIL_CHARS:])
            raise MergeProcessFailed(proc.returncode, stderr[-STDERR_TAIL_CHARS:])
        if stderr:
            LOGGER.debug("Concat stderr: %s", stderr[-STDERR_TAIL_CHARS:])


__all__ = ["ConcatCommand", "MergeEngine", "MergeResult", "ffmpeg_concat_args"]
