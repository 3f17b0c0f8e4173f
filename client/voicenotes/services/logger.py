"""Bounded activity log shared by client components."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import List

LOGGER = logging.getLogger("voicenotes.client")


class LogBuffer:
    """Keeps the most recent activity lines for a status surface.

    Every line is also forwarded to the ``voicenotes.client`` logger.
    """

    def __init__(self, max_lines: int = 200) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._lock = threading.Lock()

    def add(self, message: str, level: int = logging.INFO) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            self._lines.append(f"[{stamp}] {message}")
        LOGGER.log(level, message)

    def warning(self, message: str) -> None:
        self.add(message, logging.WARNING)

    def error(self, message: str) -> None:
        self.add(message, logging.ERROR)

    def get(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)
