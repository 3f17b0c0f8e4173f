"""Prioritized strategies for persisting a finished recording."""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from ..errors import ApiError
from .logger import LogBuffer
from .network import ApiClient


@dataclass(slots=True)
class SaveResult:
    success: bool
    strategy: str
    key: str | None = None
    local_path: str | None = None
    error: str | None = None


class SaveStrategy(Protocol):
    name: str

    def is_available(self) -> bool: ...

    async def save(self, data: bytes, filename: str, content_type: str) -> SaveResult: ...


class LocalDirectoryStrategy:
    name = "local"

    def __init__(self, directory: Path | str | None) -> None:
        self.directory = Path(directory).expanduser() if directory else None

    def is_available(self) -> bool:
        if self.directory is None:
            return False
        candidate = self.directory
        while not candidate.exists():
            if candidate.parent == candidate:
                return False
            candidate = candidate.parent
        return candidate.is_dir() and os.access(candidate, os.W_OK)

    async def save(self, data: bytes, filename: str, content_type: str) -> SaveResult:  # noqa: ARG002
        assert self.directory is not None
        target = self.directory / filename
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            return SaveResult(success=False, strategy=self.name, error=str(exc))
        return SaveResult(success=True, strategy=self.name, local_path=str(target))

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


class ServerUploadStrategy:
    name = "server"

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    def is_available(self) -> bool:
        return bool(self.client.settings_store.get().server_url.strip())

    async def save(self, data: bytes, filename: str, content_type: str) -> SaveResult:
        try:
            key = await self.client.upload_recording(data, filename, content_type)
        except ApiError as exc:
            return SaveResult(success=False, strategy=self.name, error=str(exc))
        return SaveResult(success=True, strategy=self.name, key=key)


def recording_filename(suffix: str = ".flac") -> str:
    return f"rec-{int(time.time() * 1000)}{suffix}"


async def save_recording(
    data: bytes,
    strategies: Iterable[SaveStrategy],
    *,
    filename: str | None = None,
    content_type: str = "audio/flac",
    logger: LogBuffer | None = None,
) -> SaveResult:
    """Try each available strategy in order until one succeeds."""

    filename = filename or recording_filename()
    errors: list[str] = []
    for strategy in strategies:
        if not strategy.is_available():
            if logger is not None:
                logger.add(f"Save strategy '{strategy.name}' unavailable; skipped")
            continue
        result = await strategy.save(data, filename, content_type)
        if result.success:
            if logger is not None:
                logger.add(f"Recording saved via {strategy.name}")
            return result
        errors.append(f"{strategy.name}: {result.error}")
        if logger is not None:
            logger.warning(f"Save via {strategy.name} failed: {result.error}")
    return SaveResult(
        success=False,
        strategy="none",
        error="; ".join(errors) if errors else "No save strategy available",
    )


__all__ = [
    "LocalDirectoryStrategy",
    "SaveResult",
    "SaveStrategy",
    "ServerUploadStrategy",
    "recording_filename",
    "save_recording",
]
