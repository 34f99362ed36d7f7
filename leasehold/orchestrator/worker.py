"""Worker loop: claim a slot, lease a resource, run the slot, release."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from leasehold.core.config import OrchestratorConfig
from leasehold.core.models import LogLevel, SlotOutcome
from leasehold.orchestrator.attempt import AttemptExecutor
from leasehold.orchestrator.leases import ResourcePool
from leasehold.orchestrator.session import SessionState
from leasehold.orchestrator.slots import SlotTracker

logger = logging.getLogger("leasehold.orchestrator.worker")


class Worker:
    """One sequential lane of the worker pool."""

    def __init__(
        self,
        index: int,
        session: SessionState,
        slots: SlotTracker,
        pool: ResourcePool,
        executor: AttemptExecutor,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.index = index
        self.session = session
        self.slots = slots
        self.pool = pool
        self.executor = executor
        self.config = config or OrchestratorConfig()
        self.tag = f"W{index + 1}" if session.concurrency > 1 else ""
        self.outcomes: list[SlotOutcome] = []

    async def run(self) -> list[SlotOutcome]:
        """Process slots until none remain or the session is cancelled."""
        self.session.active_workers += 1
        logger.debug("Worker %d started", self.index + 1)
        try:
            while not self.session.cancel_requested:
                slot = self.slots.claim_next()
                if slot is None:
                    break

                async with self.pool.lease() as resource_index:
                    if resource_index is not None:
                        outcome = await self.executor.run_slot(slot, resource_index, self.tag)
                        self.outcomes.append(outcome)
                        continue

                self.slots.return_slot(slot)
                wait = self.config.no_resource_wait_seconds
                self.session.log.append(
                    f"{self.tag} No free resource available - waiting {wait:g}s".strip(),
                    LogLevel.WARNING,
                )
                await asyncio.sleep(wait)
        finally:
            self.session.active_workers -= 1
            logger.debug("Worker %d exited after %d slot(s)", self.index + 1, len(self.outcomes))
        return self.outcomes
