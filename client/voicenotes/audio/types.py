"""Dataclasses shared across audio helpers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


def _new_chunk_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """One captured segment plus its upload bookkeeping."""

    payload: bytes
    duration_ms: int
    captured_at: datetime
    sequence: int = 0
    content_type: str = "audio/flac"
    id: str = field(default_factory=_new_chunk_id)
    sent: bool = False
    storage_ref: str | None = None

    @property
    def filename(self) -> str:
        suffix = _SUFFIXES.get(self.content_type, ".bin")
        return f"chunk_{self.sequence:04d}_{int(self.captured_at.timestamp() * 1000)}{suffix}"

    @property
    def size(self) -> int:
        return len(self.payload)

    def mark_sent(self, storage_ref: str | None) -> "AudioChunk":
        return replace(self, sent=True, storage_ref=storage_ref)

    def metadata(self) -> dict[str, str]:
        captured = self.captured_at
        if captured.tzinfo is None:
            captured = captured.replace(tzinfo=timezone.utc)
        return {
            "duration": str(self.duration_ms),
            "timestamp": captured.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "sequence": str(self.sequence),
        }

    def __repr__(self) -> str:
        return (
            f"AudioChunk(id={self.id[:8]}, seq={self.sequence}, bytes={len(self.payload)}, "
            f"sent={self.sent}, storage_ref={self.storage_ref!r})"
        )


_SUFFIXES = {
    "audio/flac": ".flac",
    "audio/wav": ".wav",
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
}

FORMAT_CONTENT_TYPES = {
    "FLAC": "audio/flac",
    "WAV": "audio/wav",
}
