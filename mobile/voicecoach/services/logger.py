"""Bounded activity log shared by the recorder shell."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime

LOGGER = logging.getLogger("voicecoach.activity")


class LogBuffer:
    """Keeps the most recent activity lines and mirrors them to ``logging``."""

    def __init__(self, max_lines: int = 200) -> None:
        self._lines: deque[str] = deque(maxlen=max(1, int(max_lines)))
        self._lock = threading.Lock()

    def add(self, message: str, level: int = logging.INFO) -> None:
        LOGGER.log(level, message)
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            self._lines.append(f"[{stamp}] {message}")

    def get(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()


__all__ = ["LogBuffer"]
