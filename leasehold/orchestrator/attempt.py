"""Attempt executor: drives one slot to success, exhaustion or cancellation.

Every attempt walks the same states:

    RotateResource -> Provision -> StageSequence -> Finalize

Rotation failures are retried indefinitely and never touch the budget.
A provisioning failure or any non-success stage outcome consumes one
rotation and restarts from RotateResource on the same resource. Finalize
always closes and destroys the context. Cancellation is checked once the
rotation has settled and again before each stage.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Optional

from leasehold.adapters.provisioning import ProvisioningClient
from leasehold.adapters.rotation import RotationService
from leasehold.core.config import OrchestratorConfig
from leasehold.core.exceptions import (
    BudgetExhausted,
    CancellationRequested,
    ProvisionError,
    RotationError,
    StageFailure,
)
from leasehold.core.models import CompletedUnitRecord, ExecutionContext, LogLevel, SlotOutcome
from leasehold.orchestrator.leases import ResourcePool
from leasehold.orchestrator.metrics import AttemptRun
from leasehold.orchestrator.pipeline import Pipeline
from leasehold.orchestrator.session import SessionState

logger = logging.getLogger("leasehold.orchestrator.attempt")


class AttemptStatus(str, enum.Enum):
    SUCCESS = "success"
    RETRY = "retry"


class AttemptExecutor:
    """Runs the per-slot attempt loop for whichever worker calls it.

    Holds no per-slot state of its own, so one executor is shared by all
    workers in a session.
    """

    def __init__(
        self,
        session: SessionState,
        pool: ResourcePool,
        provisioning: ProvisioningClient,
        rotation: RotationService,
        pipeline: Pipeline,
        config: Optional[OrchestratorConfig] = None,
        params: Optional[dict[str, Any]] = None,
    ):
        self.session = session
        self.pool = pool
        self.provisioning = provisioning
        self.rotation = rotation
        self.pipeline = pipeline
        self.config = config or OrchestratorConfig()
        self.params = params or {}

    def _cancelled(self) -> bool:
        return self.session.cancel_requested

    def _check_cancelled(self, run: AttemptRun, where: str) -> None:
        if self._cancelled():
            self.pipeline.metrics.complete_run(run, "cancelled")
            raise CancellationRequested(f"Cancelled {where}")

    def _log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        self.session.log.append(message, level)

    async def run_slot(self, slot: int, resource_index: int, worker_tag: str = "") -> SlotOutcome:
        """Repeat attempts for one slot until success, budget exhaustion or cancellation.

        Args:
            slot: Zero-based work-unit index claimed by the worker.
            resource_index: Index of the resource leased for the whole slot.
            worker_tag: Worker label ("W1", ...) used to prefix log lines.

        Returns:
            SUCCESS, EXHAUSTED (counted as one failure) or CANCELLED (uncounted).
        """
        prefix = f"{worker_tag} " if worker_tag else ""
        resource = self.pool.get(resource_index)
        budget = self.config.max_rotations_per_slot
        self._log(
            f"{prefix}Starting slot {slot + 1}/{self.session.target_count} "
            f"(resource #{resource_index + 1} {resource.label})"
        )

        rotations = 0
        while rotations <= budget and not self._cancelled():
            attempt_number = rotations + 1
            label = f"{prefix}[{slot + 1}/{self.session.target_count} #{attempt_number}]"

            try:
                status = await self._attempt(slot, resource_index, attempt_number, label, worker_tag)
            except CancellationRequested as e:
                self._log(f"{label} {e}", LogLevel.WARNING)
                break
            if status is AttemptStatus.SUCCESS:
                return SlotOutcome.SUCCESS

            rotations += 1
            self.session.record_rotation()

        if self._cancelled():
            self._log(f"{prefix}Slot {slot + 1} cancelled after {rotations} rotation(s)", LogLevel.WARNING)
            return SlotOutcome.CANCELLED

        exhausted = BudgetExhausted(slot, budget)
        self.session.record_failure()
        self._log(f"{prefix}SLOT FAILED - {exhausted}", LogLevel.ERROR)
        return SlotOutcome.EXHAUSTED

    async def _attempt(
        self,
        slot: int,
        resource_index: int,
        attempt_number: int,
        label: str,
        worker_tag: str,
    ) -> AttemptStatus:
        """One pass through rotate, provision, stages and finalize.

        Raises:
            CancellationRequested: The session was stopped at a checkpoint.
        """
        started = time.monotonic()
        resource = self.pool.get(resource_index)
        run = self.pipeline.metrics.start_run(slot, attempt_number, resource_index)

        self._log(f"{label} Rotating resource #{resource_index + 1}...", LogLevel.ACTION)
        await self._rotate(resource_index, label)
        self._check_cancelled(run, "after rotation")

        self._log(f"{label} Provisioning context...", LogLevel.ACTION)
        try:
            context_id = await self.provisioning.create(resource)
        except ProvisionError as e:
            self._log(f"{label} Provision failed - {e}", LogLevel.ERROR)
            self.pipeline.metrics.complete_run(run, "provision_failed")
            await asyncio.sleep(self.config.provision_failure_backoff_seconds)
            return AttemptStatus.RETRY
        except Exception as e:
            self._log(f"{label} Provision failed unexpectedly - {type(e).__name__}: {e}", LogLevel.ERROR)
            self.pipeline.metrics.complete_run(run, "provision_failed")
            await asyncio.sleep(self.config.provision_failure_backoff_seconds)
            return AttemptStatus.RETRY

        try:
            try:
                handle = await self.provisioning.open(context_id, visible=self.session.visible)
            except Exception as e:
                self._log(f"{label} Open failed for {context_id} - {e}", LogLevel.ERROR)
                self.pipeline.metrics.complete_run(run, "provision_failed")
                return AttemptStatus.RETRY

            self._check_cancelled(run, "before stages")

            context = ExecutionContext(context_id=context_id, resource_index=resource_index, handle=handle)
            self._log(f"{label} Context {context_id} ready", LogLevel.SUCCESS)
            return await self._run_stages(slot, run, context, attempt_number, label, worker_tag, started)
        finally:
            await self._finalize(context_id, label)

    async def _run_stages(
        self,
        slot: int,
        run: AttemptRun,
        context: ExecutionContext,
        attempt_number: int,
        label: str,
        worker_tag: str,
        started: float,
    ) -> AttemptStatus:
        def _on_stage(position: int, total: int, name: str) -> None:
            self._log(f"{label} STAGE {position}/{total} - {name}", LogLevel.ACTION)

        result = await self.pipeline.execute(
            run,
            context.handle,
            self.params,
            should_stop=self._cancelled,
            on_stage=_on_stage,
        )

        if result.cancelled:
            raise CancellationRequested("Cancelled between stages")

        if not result.success:
            detail = result.final_result.detail if result.final_result else None
            failure = StageFailure(detail or "no detail", stage=result.failed_stage)
            self._log(f"{label} STAGE '{failure.stage}' FAILED - {failure}", LogLevel.ERROR)
            return AttemptStatus.RETRY

        elapsed = time.monotonic() - started
        resource = self.pool.get(context.resource_index)
        record = CompletedUnitRecord(
            slot=slot,
            context_id=context.context_id,
            resource_index=context.resource_index,
            resource_label=resource.label,
            worker=worker_tag,
            rotations_used=attempt_number - 1,
            elapsed_seconds=round(elapsed, 2),
            artifacts=result.artifacts,
        )
        self.session.record_success(record)
        self._log(f"{label} SUCCESS - context {context.context_id} ({elapsed:.1f}s)", LogLevel.SUCCESS)
        self._log(f"{label} Progress: {self.session.success_count}/{self.session.target_count}")
        return AttemptStatus.SUCCESS

    async def _rotate(self, resource_index: int, label: str) -> None:
        """Rotate until it works or the session is cancelled."""
        resource = self.pool.get(resource_index)
        if not resource.can_rotate:
            self._log(
                f"{label} No rotation handle for resource #{resource_index + 1} - skipping rotation",
                LogLevel.WARNING,
            )
            return

        retry = self.config.rotation_retry_seconds
        while not self._cancelled():
            try:
                await self.rotation.rotate(resource)
            except RotationError as e:
                self._log(f"{label} Rotation failed: {e} - retrying in {retry:g}s", LogLevel.WARNING)
            except Exception as e:
                self._log(
                    f"{label} Rotation error: {type(e).__name__}: {e} - retrying in {retry:g}s",
                    LogLevel.WARNING,
                )
            else:
                settle = self.config.rotation_settle_seconds
                self._log(f"{label} Rotation initiated - waiting {settle:g}s to settle")
                await asyncio.sleep(settle)
                self._log(f"{label} Rotation complete", LogLevel.SUCCESS)
                return
            await asyncio.sleep(retry)

    async def _finalize(self, context_id: str, label: str) -> None:
        try:
            await self.provisioning.close(context_id)
        except Exception as e:
            self._log(f"{label} Close failed for {context_id}: {e}", LogLevel.ERROR)
        try:
            await self.provisioning.destroy(context_id)
        except Exception as e:
            self._log(f"{label} Destroy failed for {context_id}: {e}", LogLevel.ERROR)
