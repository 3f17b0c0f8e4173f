"""Flat keyed blob store backed by the local filesystem."""

from __future__ import annotations

import logging
import os
import re
import time
import uuid
from pathlib import Path

from ..errors import DeleteFailed, InvalidObjectKey, ObjectNotFound, WriteFailed
from ..settings import APISettings

LOGGER = logging.getLogger("voicenotes.storage")

MERGED_PREFIX = "merged-"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,199}$")
_STEM_CLEANUP = re.compile(r"[^A-Za-z0-9_-]+")

_SUFFIX_TO_TYPE = {
    ".webm": "audio/webm",
    ".flac": "audio/flac",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
}
_TYPE_TO_SUFFIX = {value: key for key, value in _SUFFIX_TO_TYPE.items()}
_TYPE_TO_SUFFIX.update({"audio/x-wav": ".wav", "audio/wave": ".wav", "audio/x-flac": ".flac"})


class StorageService:
    """Persist, fetch and delete opaque byte objects under generated keys.

    The store knows nothing about chunks or merges. Keys share one flat
    namespace; merged objects are only distinguished by the ``merged-``
    naming convention applied by the caller through ``prefix``.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: APISettings) -> "StorageService":
        return cls(settings.storage_path)

    def put(
        self,
        data: bytes,
        suggested_name: str | None = None,
        *,
        content_type: str | None = None,
        prefix: str = "",
    ) -> str:
        key = self._generate_key(suggested_name, content_type, prefix)
        target = self.root / key
        tmp_path = target.with_name(f".{key}.part")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, target)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            LOGGER.error("Failed to write object %s: %s", key, exc)
            raise WriteFailed(f"Could not store object '{key}': {exc}") from exc
        LOGGER.info("Stored object %s (%d bytes)", key, len(data))
        return key

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFound(key) from exc
        except IsADirectoryError as exc:
            raise ObjectNotFound(key) from exc

    def exists(self, key: str) -> bool:
        try:
            return self._path_for(key).is_file()
        except InvalidObjectKey:
            return False

    def size(self, key: str) -> int:
        try:
            return self._path_for(key).stat().st_size
        except FileNotFoundError as exc:
            raise ObjectNotFound(key) from exc

    def delete(self, key: str) -> None:
        """Remove ``key``; deleting an absent key is a successful no-op."""

        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            LOGGER.debug("Delete of missing object %s ignored", key)
            return
        except OSError as exc:
            LOGGER.error("Failed to delete object %s: %s", key, exc)
            raise DeleteFailed(f"Could not delete object '{key}': {exc}") from exc
        LOGGER.info("Deleted object %s", key)

    def discard(self, key: str) -> bool:
        """Best-effort delete used by cleanup paths; faults are logged only."""

        try:
            self.delete(key)
        except (DeleteFailed, InvalidObjectKey) as exc:
            LOGGER.warning("Cleanup of %s skipped: %s", key, exc)
            return False
        return True

    @staticmethod
    def content_type(key: str) -> str:
        return _SUFFIX_TO_TYPE.get(Path(key).suffix.lower(), "application/octet-stream")

    def _path_for(self, key: str) -> Path:
        if not key or ".." in key or not _KEY_PATTERN.match(key):
            raise InvalidObjectKey(key)
        return self.root / key

    def _generate_key(self, suggested_name: str | None, content_type: str | None, prefix: str) -> str:
        stem = ""
        suffix = ""
        if suggested_name:
            name = Path(suggested_name).name
            suffix = Path(name).suffix.lower()
            stem = _STEM_CLEANUP.sub("_", Path(name).stem).strip("_")[:40]
        if suffix not in _SUFFIX_TO_TYPE:
            suffix = _TYPE_TO_SUFFIX.get((content_type or "").split(";")[0].strip().lower(), suffix)
        if suffix and not re.fullmatch(r"\.[a-z0-9]{1,8}", suffix):
            suffix = ""
        parts = [str(int(time.time() * 1000)), uuid.uuid4().hex[:8]]
        if stem:
            parts.append(stem)
        return f"{prefix}{'-'.join(parts)}{suffix}"


__all__ = ["MERGED_PREFIX", "StorageService"]
