"""Persistent settings storage for server URL, API key and save options."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path


@dataclass(slots=True)
class AppSettings:
    server_url: str = ""
    api_key: str = ""
    save_dir: str = ""
    upload_retries: int = 0
    retry_delay: float = 1.0


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = {}
        settings = AppSettings()
        settings.server_url = str(raw.get("server_url", ""))
        settings.api_key = str(raw.get("api_key", ""))
        settings.save_dir = str(raw.get("save_dir", ""))
        settings.upload_retries = int(raw.get("upload_retries", settings.upload_retries))
        settings.retry_delay = float(raw.get("retry_delay", settings.retry_delay))
        return settings

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        for key, value in kwargs.items():
            if not hasattr(self._settings, key):
                continue
            current = getattr(self._settings, key)
            if isinstance(current, float):
                setattr(self._settings, key, float(value))
            elif isinstance(current, int):
                setattr(self._settings, key, int(value))
            else:
                setattr(self._settings, key, value or "")
        self._persist()
        return self._settings

    def _persist(self) -> None:
        self.path.write_text(json.dumps(asdict(self._settings)), encoding="utf-8")
