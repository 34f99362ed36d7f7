"""Slot tracker: hands out work-unit indices exactly once each."""

from __future__ import annotations

import heapq
import logging
import threading
from typing import Optional

logger = logging.getLogger("leasehold.orchestrator.slots")


class SlotTracker:
    """Issues indices in ``[0, target_count)`` in increasing order.

    ``return_slot`` requeues an index whose attempt never started. A
    returned index is the next one handed out and is re-issued only once.
    """

    def __init__(self, target_count: int):
        self.target_count = max(0, target_count)
        self._next_index = 0
        self._returned: list[int] = []
        self._lock = threading.Lock()

    @property
    def next_index(self) -> int:
        return self._next_index

    def claim_next(self) -> Optional[int]:
        with self._lock:
            if self._returned:
                return heapq.heappop(self._returned)
            if self._next_index >= self.target_count:
                return None
            index = self._next_index
            self._next_index += 1
            return index

    def return_slot(self, index: int) -> None:
        with self._lock:
            if index < 0 or index >= self._next_index or index in self._returned:
                logger.warning("Ignoring return of slot %d (never issued or already returned)", index)
                return
            if index == self._next_index - 1:
                self._next_index -= 1
            else:
                heapq.heappush(self._returned, index)

    @property
    def remaining(self) -> int:
        with self._lock:
            return self.target_count - self._next_index + len(self._returned)
