"""Stage contract for Leasehold attempt pipelines.

A stage is one named step run against an opened execution context. The
orchestrator only looks at its three-way outcome; what a stage does with
the handle is its own business.
"""

from __future__ import annotations

import importlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Protocol, Sequence, runtime_checkable

from leasehold.core.exceptions import ConfigError, StageFailure
from leasehold.core.models import StageOutcome, StageResult


@runtime_checkable
class Stage(Protocol):
    name: str

    async def run(self, handle: Any, params: dict[str, Any]) -> StageResult:
        ...


class BaseStage(ABC):
    """Base class for pipeline stages.

    Subclasses implement ``process()``. ``run()`` wraps it with timing and
    logging, turns a raised StageFailure into a soft fail, and turns any
    other exception into a hard fail.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"leasehold.stage.{name.lower()}")
        self._metrics: dict[str, Any] = {
            "total_runs": 0,
            "total_failures": 0,
            "last_duration_seconds": 0.0,
        }

    @abstractmethod
    async def process(self, handle: Any, params: dict[str, Any]) -> StageResult:
        """Drive one step against ``handle`` and report the outcome."""

    async def run(self, handle: Any, params: dict[str, Any]) -> StageResult:
        self.logger.info("[%s] Starting", self.name)
        start = time.monotonic()

        try:
            result = await self.process(handle, params)
        except StageFailure as e:
            result = self.soft_fail(str(e))
        except Exception as e:
            self.logger.error("[%s] Error: %s", self.name, e, exc_info=True)
            result = StageResult(
                stage_name=self.name,
                outcome=StageOutcome.HARD_FAIL,
                detail=f"{type(e).__name__}: {e}",
            )

        duration = time.monotonic() - start
        result.duration_seconds = duration
        self._metrics["total_runs"] += 1
        self._metrics["last_duration_seconds"] = duration
        if not result.succeeded:
            self._metrics["total_failures"] += 1
        self.logger.info(
            "[%s] Complete: outcome=%s (%.2fs)",
            self.name, result.outcome.value, duration,
        )
        return result

    def success(self, **data: Any) -> StageResult:
        return StageResult(stage_name=self.name, outcome=StageOutcome.SUCCESS, data=data)

    def soft_fail(self, detail: str) -> StageResult:
        return StageResult(stage_name=self.name, outcome=StageOutcome.SOFT_FAIL, detail=detail)

    def get_metrics(self) -> dict[str, Any]:
        """Return a copy of the stage's runtime metrics."""
        return self._metrics.copy()


StageFunc = Callable[[Any, dict[str, Any]], Awaitable[Any]]


class CallableStage(BaseStage):
    """Adapts a plain async function into a stage.

    The function may return a StageResult, a dict (taken as success data),
    or None (success, no data). Raising StageFailure soft-fails the stage.
    """

    def __init__(self, name: str, func: StageFunc):
        super().__init__(name)
        self._func = func

    async def process(self, handle: Any, params: dict[str, Any]) -> StageResult:
        value = await self._func(handle, params)
        if isinstance(value, StageResult):
            return value
        if value is None:
            return self.success()
        if isinstance(value, dict):
            return self.success(**value)
        raise TypeError(f"Stage '{self.name}' returned unsupported type {type(value).__name__}")


def load_stages(spec: str) -> list[Stage]:
    """Import ``package.module:factory`` and call it to get the stage list."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Stage spec must look like 'package.module:factory', got '{spec}'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import stage module '{module_name}': {e}") from e

    factory = getattr(module, attr, None)
    if factory is None:
        raise ConfigError(f"Module '{module_name}' has no attribute '{attr}'")

    stages = factory() if callable(factory) else factory
    if not isinstance(stages, Sequence) or not stages:
        raise ConfigError(f"Stage factory '{spec}' must return a non-empty list of stages")
    for stage in stages:
        if not isinstance(stage, Stage):
            raise ConfigError(f"Stage factory '{spec}' returned a non-stage: {stage!r}")
    return list(stages)
