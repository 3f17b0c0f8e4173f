"""API settings resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


class APISettings(BaseModel):
    app_name: str = Field(default="VoiceNotes API")
    version: str = Field(default="1.0.0")
    data_dir: str = Field(default=os.getenv("DATA_DIR", "data"))
    storage_dir: str | None = Field(default=os.getenv("STORAGE_DIR"))
    scratch_dir: str | None = Field(default=os.getenv("SCRATCH_DIR"))
    api_keys: List[str] = Field(default_factory=lambda: _split_keys())
    ffmpeg_binary: str = Field(default=os.getenv("FFMPEG_BINARY", "ffmpeg"))
    merge_timeout_sec: float | None = Field(default_factory=lambda: _merge_timeout())
    max_upload_mb: float = Field(default=float(os.getenv("MAX_UPLOAD_MB", "50")))
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    @property
    def storage_path(self) -> str:
        return self.storage_dir or os.path.join(self.data_dir, "objects")

    @property
    def scratch_path(self) -> str:
        return self.scratch_dir or os.path.join(self.data_dir, "scratch")

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * 1024 * 1024)


def _split_keys() -> List[str]:
    raw = os.getenv("API_KEYS") or os.getenv("API_KEY") or ""
    return [key.strip() for key in raw.split(",") if key.strip()]


def _merge_timeout() -> float | None:
    raw = os.getenv("MERGE_TIMEOUT_SEC", "").strip()
    if not raw:
        return None
    value = float(raw)
    return value if value > 0 else None


@lru_cache()
def get_settings() -> APISettings:
    return APISettings()
