"""Shared configuration for the VoiceNotes capture client."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class AppConfig:
    chunk_seconds: int = 10
    max_chunks: int = 5
    sample_rate: int = 16000
    channels: int = 1
    chunk_format: str = "FLAC"
    settings_file: str = "settings.json"
    recordings_dir: str = "recordings"
    log_history: int = 200

    @property
    def chunk_duration_ms(self) -> int:
        return self.chunk_seconds * 1000


CONFIG = AppConfig()

MAX_CHUNKS = CONFIG.max_chunks
