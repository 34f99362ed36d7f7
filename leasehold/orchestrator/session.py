"""Run-wide session state for Leasehold.

A SessionState is built by the controller on every start and discarded on
the next one. It owns the counters, the cancellation flag, the bounded log
buffer and the completed-unit output list.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Optional

from leasehold.core.models import CompletedUnitRecord, LogEntry, LogLevel

logger = logging.getLogger("leasehold.session")

_LEVEL_MAP = {
    LogLevel.INFO: logging.INFO,
    LogLevel.ACTION: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


class SessionLog:
    """Append-only ring buffer of LogEntry, mirrored to the stdlib logger."""

    def __init__(
        self,
        capacity: int = 500,
        exposed: int = 200,
        on_append: Optional[Callable[[LogEntry], None]] = None,
    ):
        self.capacity = max(1, capacity)
        self.exposed = max(0, min(exposed, self.capacity))
        self._entries: deque[LogEntry] = deque(maxlen=self.capacity)
        self._on_append = on_append

    def append(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        entry = LogEntry(message=message, level=level)
        self._entries.append(entry)
        logger.log(_LEVEL_MAP[level], message)
        if self._on_append is not None:
            self._on_append(entry)
        return entry

    def tail(self, count: Optional[int] = None) -> list[LogEntry]:
        """Return the last ``count`` entries (default: the exposed window)."""
        n = self.exposed if count is None else count
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def __len__(self) -> int:
        return len(self._entries)


class SessionState:
    """Counters and flags for the single active run."""

    def __init__(
        self,
        target_count: int = 0,
        concurrency: int = 1,
        visible: bool = True,
        log: Optional[SessionLog] = None,
    ):
        self.target_count = target_count
        self.concurrency = concurrency
        self.visible = visible
        self.running = False
        self.cancel_requested = False
        self.success_count = 0
        self.failed_count = 0
        self.rotation_count = 0
        self.active_workers = 0
        self.launched_workers = 0
        self.completed_units: list[CompletedUnitRecord] = []
        self.log = log if log is not None else SessionLog()

    def record_success(self, record: CompletedUnitRecord) -> None:
        self.completed_units.append(record)
        self.success_count += 1

    def record_failure(self) -> None:
        self.failed_count += 1

    def record_rotation(self) -> None:
        self.rotation_count += 1
