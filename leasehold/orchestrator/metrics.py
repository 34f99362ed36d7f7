"""Attempt metrics collector for Leasehold.

Records per-stage execution data for every attempt:
  {slot, stage_name, started_at, completed_at, duration_seconds, outcome, detail}

Feeds the progress snapshot with outcome counts and the slowest stage.
Attempts from several workers interleave, so each attempt is tracked by
its own AttemptRun handle rather than a single "current run".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional

logger = logging.getLogger("leasehold.orchestrator.metrics")


@dataclass
class StageMetric:
    """Single stage execution record within an attempt."""
    slot: int
    stage_name: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    outcome: str = "pending"
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"


@dataclass
class AttemptRun:
    """Aggregated metrics for one attempt on one slot."""
    slot: int
    attempt_number: int
    resource_index: int
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: Optional[datetime] = None
    stage_metrics: list[StageMetric] = field(default_factory=list)
    outcome: str = "in_progress"  # "success", "failure", "cancelled"
    failed_stage: Optional[str] = None

    @property
    def total_duration(self) -> float:
        return sum(m.duration_seconds for m in self.stage_metrics)

    @property
    def bottleneck_stage(self) -> Optional[str]:
        if not self.stage_metrics:
            return None
        slowest = max(self.stage_metrics, key=lambda m: m.duration_seconds)
        return slowest.stage_name


class PipelineMetrics:
    """Collects and aggregates attempt metrics across all workers."""

    def __init__(self):
        self._runs: list[AttemptRun] = []

    def start_run(self, slot: int, attempt_number: int, resource_index: int) -> AttemptRun:
        run = AttemptRun(slot=slot, attempt_number=attempt_number, resource_index=resource_index)
        self._runs.append(run)
        logger.debug("Attempt #%d started for slot %d", attempt_number, slot + 1)
        return run

    def start_stage(self, run: AttemptRun, stage_name: str) -> StageMetric:
        metric = StageMetric(slot=run.slot, stage_name=stage_name, started_at=datetime.now(UTC))
        run.stage_metrics.append(metric)
        return metric

    def complete_stage(
        self,
        metric: StageMetric,
        outcome: str,
        detail: Optional[str] = None,
    ) -> None:
        metric.completed_at = datetime.now(UTC)
        metric.outcome = outcome
        metric.detail = detail
        metric.duration_seconds = (metric.completed_at - metric.started_at).total_seconds()
        logger.debug(
            "Stage '%s': outcome=%s, duration=%.2fs",
            metric.stage_name, outcome, metric.duration_seconds,
        )

    def complete_run(
        self,
        run: AttemptRun,
        outcome: str,
        failed_stage: Optional[str] = None,
    ) -> AttemptRun:
        run.completed_at = datetime.now(UTC)
        run.outcome = outcome
        run.failed_stage = failed_stage
        logger.debug(
            "Attempt #%d for slot %d complete: outcome=%s, duration=%.2fs, bottleneck=%s",
            run.attempt_number,
            run.slot + 1,
            outcome,
            run.total_duration,
            run.bottleneck_stage or "none",
        )
        return run

    def get_summary(self) -> dict:
        """Aggregate summary of all recorded attempts."""
        if not self._runs:
            return {"total_attempts": 0}

        outcomes: dict[str, int] = {}
        failed_stages: dict[str, int] = {}
        stage_time: dict[str, float] = {}
        for r in self._runs:
            outcomes[r.outcome] = outcomes.get(r.outcome, 0) + 1
            if r.failed_stage:
                failed_stages[r.failed_stage] = failed_stages.get(r.failed_stage, 0) + 1
            for m in r.stage_metrics:
                stage_time[m.stage_name] = stage_time.get(m.stage_name, 0.0) + m.duration_seconds

        completed = [r for r in self._runs if r.completed_at is not None]
        avg = sum(r.total_duration for r in completed) / len(completed) if completed else 0.0

        return {
            "total_attempts": len(self._runs),
            "outcomes": outcomes,
            "failed_stages": failed_stages,
            "bottleneck_stage": max(stage_time, key=stage_time.get) if stage_time else None,
            "average_attempt_seconds": round(avg, 2),
        }
