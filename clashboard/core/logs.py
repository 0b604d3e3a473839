"""Bounded buffer of controller log lines."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..types import LogEntry

logger = logging.getLogger(__name__)


class LogBuffer:
    """Keeps the most recent log lines.

    Appending past ``max_entries`` drops everything but the last
    ``keep_entries`` lines, so the buffer is trimmed in batches rather
    than on every line.
    """

    def __init__(self, max_entries: int = 500, keep_entries: int = 300) -> None:
        if not 0 < keep_entries <= max_entries:
            raise ValueError("keep_entries must be > 0 and <= max_entries")
        self.max_entries = max_entries
        self.keep_entries = keep_entries
        self._entries: list[LogEntry] = []

    def extend(self, entries: Iterable[LogEntry]) -> bool:
        """Append *entries*. Returns True when older lines were dropped."""
        self._entries.extend(entries)
        if len(self._entries) <= self.max_entries:
            return False
        dropped = len(self._entries) - self.keep_entries
        self._entries = self._entries[-self.keep_entries:]
        logger.debug("Log buffer trimmed, dropped %d line(s)", dropped)
        return True

    def values(self) -> list[LogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
