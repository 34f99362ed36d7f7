"""Pydantic data models for Leasehold.

Defines the contracts exchanged between the controller, workers, stages
and the control channel.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class LogLevel(str, enum.Enum):
    INFO = "info"
    ACTION = "action"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class StageOutcome(str, enum.Enum):
    SUCCESS = "success"
    SOFT_FAIL = "soft_fail"
    HARD_FAIL = "hard_fail"


class SlotOutcome(str, enum.Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Session records
# ---------------------------------------------------------------------------

class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    message: str
    level: LogLevel = LogLevel.INFO


class CompletedUnitRecord(BaseModel):
    """Artifact produced when every stage of an attempt succeeds."""
    slot: int
    context_id: str
    resource_index: int
    resource_label: str
    worker: str = ""
    rotations_used: int = 0
    elapsed_seconds: float = 0.0
    artifacts: dict[str, Any] = Field(default_factory=dict)
    completed_at: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Stage contract
# ---------------------------------------------------------------------------

class StageResult(BaseModel):
    """Standardized output from any stage."""
    stage_name: str
    outcome: StageOutcome
    detail: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == StageOutcome.SUCCESS


class ExecutionContext(BaseModel):
    """An opened context bound to one resource for the length of one attempt."""
    context_id: str
    resource_index: int
    handle: Any = None


# ---------------------------------------------------------------------------
# Control channel
# ---------------------------------------------------------------------------

class ControlAck(BaseModel):
    accepted: bool
    message: str = ""


class ProgressSnapshot(BaseModel):
    """Read-only copy of session state for the control channel."""
    running: bool
    cancel_requested: bool
    target_count: int
    success_count: int
    failed_count: int
    rotation_count: int
    concurrency: int
    visible: bool
    launched_workers: int = 0
    active_workers: int = 0
    held_resources: list[int] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
    completed_units: list[CompletedUnitRecord] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
