"""Run-scoped collector for progress notes, flushed once at the CLI boundary."""

from __future__ import annotations

import threading
from typing import List, Optional, TextIO, Tuple


class Diagnostics:
    """Collects `[info]`/`[warn]` lines instead of printing from deep inside the core."""

    def __init__(self) -> None:
        self._entries: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def note(self, message: str) -> None:
        self._add("info", message)

    def warn(self, message: str) -> None:
        self._add("warn", message)

    def _add(self, level: str, message: str) -> None:
        with self._lock:
            self._entries.append((level, message))

    @property
    def warnings(self) -> List[str]:
        with self._lock:
            return [message for level, message in self._entries if level == "warn"]

    def lines(self) -> List[str]:
        with self._lock:
            return [f"[{level}] {message}" for level, message in self._entries]

    def flush(self, stream: Optional[TextIO] = None) -> None:
        """Print and forget everything collected so far."""
        for line in self.lines():
            print(line, file=stream)
        with self._lock:
            self._entries.clear()


__all__ = ["Diagnostics"]
