"""Sequential stage pipeline for Leasehold.

Runs the configured stages in order against one execution handle. Each
stage execution is wrapped with metrics collection. The first non-success
outcome stops the pipeline.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from leasehold.core.models import StageOutcome, StageResult
from leasehold.orchestrator.metrics import AttemptRun, PipelineMetrics
from leasehold.stages.base import Stage

logger = logging.getLogger("leasehold.orchestrator.pipeline")


class Pipeline:
    """Sequential stage execution with metrics.

    Stages are opaque: the pipeline passes each one the same handle and
    session params and only inspects the returned outcome.
    """

    def __init__(self, metrics: Optional[PipelineMetrics] = None):
        self.metrics = metrics or PipelineMetrics()
        self._stages: list[Stage] = []

    def add_stage(self, stage: Stage) -> "Pipeline":
        """Append a stage. Returns self for chaining."""
        self._stages.append(stage)
        return self

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self._stages]

    def __len__(self) -> int:
        return len(self._stages)

    async def execute(
        self,
        run: AttemptRun,
        handle: Any,
        params: dict[str, Any],
        should_stop: Callable[[], bool] = lambda: False,
        on_stage: Optional[Callable[[int, int, str], None]] = None,
    ) -> "PipelineResult":
        """Run every stage in order.

        Args:
            run: Metrics handle for this attempt.
            handle: Execution handle from the provisioning client.
            params: Session params passed through to every stage.
            should_stop: Polled before each stage; True ends the run as cancelled.
            on_stage: Optional callback(position, total, name) before each stage.

        Returns:
            PipelineResult with every stage result collected so far.
        """
        stage_results: list[StageResult] = []
        total = len(self._stages)

        for i, stage in enumerate(self._stages):
            if should_stop():
                self.metrics.complete_run(run, "cancelled")
                return PipelineResult(success=False, stage_results=stage_results, cancelled=True)

            if on_stage is not None:
                on_stage(i + 1, total, stage.name)
            logger.debug("Pipeline stage %d/%d: %s", i + 1, total, stage.name)

            metric = self.metrics.start_stage(run, stage.name)
            try:
                result = await stage.run(handle, params)
                if not isinstance(result, StageResult):
                    raise TypeError(f"stage returned {type(result).__name__}, expected StageResult")
            except Exception as e:
                logger.error("Stage '%s' raised: %s", stage.name, e, exc_info=True)
                result = StageResult(
                    stage_name=stage.name,
                    outcome=StageOutcome.HARD_FAIL,
                    detail=f"{type(e).__name__}: {e}",
                )
            self.metrics.complete_stage(metric, result.outcome.value, detail=result.detail)
            stage_results.append(result)

            if not result.succeeded:
                logger.warning(
                    "Pipeline stopped at stage %d (%s): %s",
                    i + 1, stage.name, result.detail,
                )
                self.metrics.complete_run(run, "failure", failed_stage=stage.name)
                return PipelineResult(
                    success=False,
                    stage_results=stage_results,
                    failed_stage=stage.name,
                )

        self.metrics.complete_run(run, "success")
        return PipelineResult(success=True, stage_results=stage_results)


class PipelineResult:
    """Result of a pipeline execution."""

    def __init__(
        self,
        success: bool,
        stage_results: list[StageResult] | None = None,
        failed_stage: str | None = None,
        cancelled: bool = False,
    ):
        self.success = success
        self.stage_results = stage_results or []
        self.failed_stage = failed_stage
        self.cancelled = cancelled

    @property
    def final_result(self) -> StageResult | None:
        return self.stage_results[-1] if self.stage_results else None

    @property
    def artifacts(self) -> dict[str, Any]:
        """Merge every stage's data, later stages winning on key clashes."""
        merged: dict[str, Any] = {}
        for r in self.stage_results:
            merged.update(r.data)
        return merged
