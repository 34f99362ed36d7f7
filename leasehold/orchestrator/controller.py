"""Session controller for Leasehold.

Owns the single active session: starts and stops the worker pool,
computes effective concurrency, aggregates results and serves progress
snapshots. ``start`` launches a supervisor task and returns at once; the
supervisor always leaves ``running`` false when it ends, even on a crash.
The first worker crash requests cancellation for the rest and ends the
session as fatal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Sequence

from leasehold.adapters.provisioning import ProvisioningClient
from leasehold.adapters.rotation import RotationService
from leasehold.core.config import AppConfig, ResourceConfig
from leasehold.core.exceptions import ConfigError, SessionFatalError
from leasehold.core.models import ControlAck, LogEntry, LogLevel, ProgressSnapshot
from leasehold.orchestrator.attempt import AttemptExecutor
from leasehold.orchestrator.leases import ResourcePool
from leasehold.orchestrator.metrics import PipelineMetrics
from leasehold.orchestrator.pipeline import Pipeline
from leasehold.orchestrator.session import SessionLog, SessionState
from leasehold.orchestrator.slots import SlotTracker
from leasehold.orchestrator.worker import Worker
from leasehold.stages.base import Stage

logger = logging.getLogger("leasehold.orchestrator.controller")

ProgressListener = Callable[[ProgressSnapshot], None]


def effective_worker_count(concurrency: int, remaining: int, pool_size: int) -> int:
    return max(0, min(concurrency, remaining, pool_size))


class SessionController:
    """Control-channel facade over one run at a time.

    Injected dependencies:
        config: Application config (orchestrator delays, budget, log sizes).
        provisioning: Creates/opens/closes/destroys execution contexts.
        rotation: Rotates resources between attempts.
        stages: Ordered stage list run on every attempt.
        resource_loader: Reads the resource pool; called once per start.
    """

    def __init__(
        self,
        config: AppConfig,
        provisioning: ProvisioningClient,
        rotation: RotationService,
        stages: Sequence[Stage],
        resource_loader: Callable[[], list[ResourceConfig]] = list,
    ):
        self.config = config
        self.provisioning = provisioning
        self.rotation = rotation
        self.stages = list(stages)
        self.resource_loader = resource_loader
        self._concurrency = self._clamp(config.orchestrator.default_concurrency)
        self._visible = config.orchestrator.default_visible
        self._listeners: list[ProgressListener] = []
        self._supervisor: Optional[asyncio.Task] = None

        self.state = self._new_state(0)
        self.pool = ResourcePool([])
        self.slots = SlotTracker(0)
        self.metrics = PipelineMetrics()

    # ------------------------------------------------------------------
    # Control channel
    # ------------------------------------------------------------------

    async def start(self, target_count: int, params: Optional[dict[str, Any]] = None) -> ControlAck:
        """Reset state and launch the worker pool in the background.

        Args:
            target_count: Number of work units to complete (at least 1).
            params: Session parameters handed unchanged to every stage.

        Returns:
            ControlAck. Rejected when a run is active, the target is below 1,
            no stages are configured or the resource pool cannot be loaded.
        """
        if self.state.running:
            return ControlAck(accepted=False, message="Already running")
        if target_count < 1:
            return ControlAck(accepted=False, message="Target count must be at least 1")
        if not self.stages:
            return ControlAck(accepted=False, message="No stages configured")

        try:
            resources = self.resource_loader()
        except ConfigError as e:
            self.state.log.append(f"Cannot start: {e}", LogLevel.ERROR)
            return ControlAck(accepted=False, message=str(e))

        self.state = self._new_state(target_count)
        self.state.running = True
        self.pool = ResourcePool(resources)
        self.slots = SlotTracker(target_count)
        self.metrics = PipelineMetrics()

        pipeline = Pipeline(metrics=self.metrics)
        for stage in self.stages:
            pipeline.add_stage(stage)
        executor = AttemptExecutor(
            session=self.state,
            pool=self.pool,
            provisioning=self.provisioning,
            rotation=self.rotation,
            pipeline=pipeline,
            config=self.config.orchestrator,
            params=dict(params or {}),
        )

        self._log(
            f"Starting session: target {target_count}, concurrency {self.state.concurrency}, "
            f"{len(self.pool)} resource(s), stages {pipeline.stage_names}",
            LogLevel.ACTION,
        )
        self._supervisor = asyncio.create_task(self._supervise(executor), name="leasehold-supervisor")
        return ControlAck(accepted=True, message=f"Session started ({self.state.concurrency} concurrent)")

    def stop(self) -> ControlAck:
        """Request cooperative cancellation. Does not wait for workers.

        In-flight attempts run to completion; no new attempt or slot starts.

        Returns:
            ControlAck, rejected when no session is running.
        """
        if not self.state.running:
            return ControlAck(accepted=False, message="Not running")
        if not self.state.cancel_requested:
            self.state.cancel_requested = True
            self._log("Stop requested - in-flight attempts will finish", LogLevel.WARNING)
        return ControlAck(accepted=True, message="Stop requested")

    def get_progress(self) -> ProgressSnapshot:
        """Return a detached snapshot of counters, the exposed log window and results."""
        state = self.state
        return ProgressSnapshot(
            running=state.running,
            cancel_requested=state.cancel_requested,
            target_count=state.target_count,
            success_count=state.success_count,
            failed_count=state.failed_count,
            rotation_count=state.rotation_count,
            concurrency=self._concurrency,
            visible=state.visible,
            launched_workers=state.launched_workers,
            active_workers=state.active_workers,
            held_resources=self.pool.held(),
            logs=[entry.model_copy() for entry in state.log.tail()],
            completed_units=[record.model_copy(deep=True) for record in state.completed_units],
            metrics=self.metrics.get_summary(),
        )

    def set_concurrency(self, n: Any) -> ControlAck:
        """Clamp and store concurrency. Applies from the next start.

        Args:
            n: Requested worker count. Non-numeric input falls back to the minimum.

        Returns:
            ControlAck carrying the clamped value.
        """
        self._concurrency = self._clamp(n)
        self._log(f"Concurrency set to {self._concurrency}")
        return ControlAck(accepted=True, message=f"Concurrency set to {self._concurrency}")

    def set_visible(self, enabled: bool) -> ControlAck:
        """Toggle context visibility. Applies from the next provisioning call."""
        self._visible = bool(enabled)
        self.state.visible = self._visible
        self._log(f"Visible contexts {'enabled' if self._visible else 'disabled'}")
        return ControlAck(accepted=True, message=f"Visible set to {self._visible}")

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a push-style progress listener.

        Args:
            listener: Called with a fresh ProgressSnapshot on every log entry
                and once more when the session ends.

        Returns:
            Callable that removes the listener. Safe to call twice.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def wait(self) -> ProgressSnapshot:
        """Wait for the current supervisor to finish and return the final snapshot."""
        if self._supervisor is not None:
            await self._supervisor
        return self.get_progress()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def running(self) -> bool:
        return self.state.running

    # ------------------------------------------------------------------
    # Supervisor
    # ------------------------------------------------------------------

    async def _supervise(self, executor: AttemptExecutor) -> None:
        try:
            await self._run_workers(executor)
        except Exception as e:
            fatal = e if isinstance(e, SessionFatalError) else SessionFatalError(f"{type(e).__name__}: {e}")
            self.state.cancel_requested = True
            logger.critical("Session supervisor failed", exc_info=True)
            self._log(f"Fatal session error: {fatal}", LogLevel.CRITICAL)
        finally:
            self.state.running = False
            self._notify()

    async def _run_workers(self, executor: AttemptExecutor) -> None:
        state = self.state
        pool_size = len(self.pool)
        num_workers = effective_worker_count(state.concurrency, self.slots.remaining, pool_size)
        if pool_size < state.concurrency:
            self._log(
                f"Concurrency capped to {num_workers} ({pool_size} resource(s) available)",
                LogLevel.WARNING,
            )

        tasks: list[asyncio.Task] = []
        for w in range(num_workers):
            if w > 0:
                await asyncio.sleep(self.config.orchestrator.worker_stagger_seconds)
                if state.cancel_requested:
                    break
            worker = Worker(
                index=w,
                session=state,
                slots=self.slots,
                pool=self.pool,
                executor=executor,
                config=self.config.orchestrator,
            )
            tasks.append(asyncio.create_task(worker.run(), name=f"leasehold-worker-{w + 1}"))
            state.launched_workers += 1

        if tasks:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            errors = [t.exception() for t in done if not t.cancelled() and t.exception() is not None]
            if errors:
                state.cancel_requested = True
                self._log("Worker crashed - stopping remaining workers", LogLevel.ERROR)
                results = await asyncio.gather(*pending, return_exceptions=True)
                errors.extend(r for r in results if isinstance(r, Exception))
                raise SessionFatalError(f"{len(errors)} worker(s) crashed: {errors[0]!r}") from errors[0]

        label = "SESSION STOPPED" if state.cancel_requested else "SESSION COMPLETE"
        self._log(
            f"{label} - succeeded {state.success_count}/{state.target_count}, "
            f"rotations {state.rotation_count}, failed {state.failed_count}",
            LogLevel.SUCCESS if not state.cancel_requested else LogLevel.WARNING,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_state(self, target_count: int) -> SessionState:
        log = SessionLog(
            capacity=self.config.session_log.capacity,
            exposed=self.config.session_log.exposed,
            on_append=self._on_log_entry,
        )
        return SessionState(
            target_count=target_count,
            concurrency=self._concurrency,
            visible=self._visible,
            log=log,
        )

    def _clamp(self, n: Any) -> int:
        lo = self.config.orchestrator.min_concurrency
        hi = self.config.orchestrator.max_concurrency
        try:
            value = int(n)
        except (TypeError, ValueError):
            value = lo
        return max(lo, min(hi, value))

    def _log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        self.state.log.append(message, level)

    def _on_log_entry(self, entry: LogEntry) -> None:
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.get_progress()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.warning("Progress listener %r failed", listener, exc_info=True)
