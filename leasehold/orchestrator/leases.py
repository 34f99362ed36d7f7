"""Resource pool and lease manager.

Each configured resource may be held by at most one worker at a time.
The locked set is the only shared view of who holds what.
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from leasehold.core.config import ResourceConfig

logger = logging.getLogger("leasehold.orchestrator.leases")


class ResourcePool:
    """Fixed, ordered list of exclusive resources.

    An empty configuration yields a single direct resource with no
    connection parameters and no rotation handle.
    """

    def __init__(self, resources: Sequence[ResourceConfig]):
        self._resources: list[ResourceConfig] = list(resources) or [ResourceConfig(name="direct")]
        self._locked: set[int] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._resources)

    def get(self, index: int) -> ResourceConfig:
        return self._resources[index]

    def claim(self) -> Optional[int]:
        """Lock and return the first free index, or None when all are held."""
        with self._lock:
            for i in range(len(self._resources)):
                if i not in self._locked:
                    self._locked.add(i)
                    logger.debug("Claimed resource #%d", i + 1)
                    return i
            return None

    def release(self, index: int) -> None:
        with self._lock:
            self._locked.discard(index)
        logger.debug("Released resource #%d", index + 1)

    def held(self) -> list[int]:
        with self._lock:
            return sorted(self._locked)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[Optional[int]]:
        """Claim a resource for the duration of the block. Yields None if none are free."""
        index = self.claim()
        try:
            yield index
        finally:
            if index is not None:
                self.release(index)
