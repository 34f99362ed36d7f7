"""Shared fakes and builders for Leasehold tests.

Collaborators are small in-memory fakes that record every call; no mock
library. All orchestrator delays are zero so sessions finish instantly.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from leasehold.core.config import AppConfig, OrchestratorConfig, ResourceConfig
from leasehold.core.exceptions import OpenError, ProvisionError, RotationError
from leasehold.core.models import StageOutcome, StageResult
from leasehold.orchestrator.controller import SessionController
from leasehold.stages.base import BaseStage


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeProvisioningClient:
    """Records every call and tracks how many live contexts each resource has.

    ``create_failures`` / ``open_failures``: number of leading calls that fail,
    or -1 to fail forever.
    """

    def __init__(self, create_failures: int = 0, open_failures: int = 0):
        self.create_failures = create_failures
        self.open_failures = open_failures
        self.create_calls = 0
        self.open_calls = 0
        self.visible_flags: list[bool] = []
        self.closed: list[str] = []
        self.destroyed: list[str] = []
        self.live: dict[str, str] = {}
        self.live_per_resource: dict[str, int] = {}
        self.peak_per_resource: dict[str, int] = {}
        self.peak_live = 0

    async def create(self, resource: ResourceConfig) -> str:
        self.create_calls += 1
        call = self.create_calls
        await asyncio.sleep(0)
        if self.create_failures == -1 or self.create_failures >= call:
            raise ProvisionError("backend refused")
        context_id = f"ctx-{call}"
        label = resource.label
        self.live[context_id] = label
        self.live_per_resource[label] = self.live_per_resource.get(label, 0) + 1
        self.peak_per_resource[label] = max(
            self.peak_per_resource.get(label, 0), self.live_per_resource[label]
        )
        self.peak_live = max(self.peak_live, len(self.live))
        return context_id

    async def open(self, context_id: str, visible: bool = True) -> Any:
        self.open_calls += 1
        self.visible_flags.append(visible)
        if self.open_failures == -1 or self.open_failures >= self.open_calls:
            raise OpenError("window did not start")
        return {"context_id": context_id}

    async def close(self, context_id: str) -> None:
        self.closed.append(context_id)

    async def destroy(self, context_id: str) -> None:
        self.destroyed.append(context_id)
        label = self.live.pop(context_id, None)
        if label is not None:
            self.live_per_resource[label] -= 1


class FakeRotationService:
    def __init__(self, failures: int = 0, on_call: Optional[Any] = None):
        self.failures = failures
        self.calls: list[str] = []
        self.on_call = on_call

    async def rotate(self, resource: ResourceConfig) -> None:
        self.calls.append(resource.label)
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if self.failures == -1 or self.failures >= len(self.calls):
            raise RotationError("reboot refused")


class ScriptedStage(BaseStage):
    """Returns the scripted outcomes in order, then ``default`` forever."""

    def __init__(
        self,
        name: str = "Scripted",
        outcomes: Optional[list[StageOutcome]] = None,
        default: StageOutcome = StageOutcome.SUCCESS,
        delay: float = 0.0,
        data: Optional[dict[str, Any]] = None,
    ):
        super().__init__(name)
        self.outcomes = list(outcomes or [])
        self.default = default
        self.delay = delay
        self.data = data or {}
        self.calls = 0

    async def process(self, handle: Any, params: dict[str, Any]) -> StageResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if outcome == StageOutcome.SUCCESS:
            return self.success(**self.data)
        return StageResult(stage_name=self.name, outcome=outcome, detail=f"{self.name} scripted {outcome.value}")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_fast_config(**orchestrator_overrides: Any) -> AppConfig:
    settings: dict[str, Any] = {
        "worker_stagger_seconds": 0,
        "no_resource_wait_seconds": 0,
        "rotation_retry_seconds": 0,
        "rotation_settle_seconds": 0,
        "provision_failure_backoff_seconds": 0,
    }
    settings.update(orchestrator_overrides)
    return AppConfig(orchestrator=OrchestratorConfig(**settings))


def make_resources(count: int, rotatable: bool = True) -> list[ResourceConfig]:
    return [
        ResourceConfig(
            name=f"res-{i + 1}",
            host=f"10.0.0.{i + 1}",
            port=8000 + i,
            rotate_url=f"https://rotate.test/{i + 1}" if rotatable else None,
        )
        for i in range(count)
    ]


def make_controller(
    config: Optional[AppConfig] = None,
    resources: Optional[list[ResourceConfig]] = None,
    stages: Optional[list[BaseStage]] = None,
    provisioning: Optional[FakeProvisioningClient] = None,
    rotation: Optional[FakeRotationService] = None,
) -> SessionController:
    pool = resources if resources is not None else make_resources(2)
    return SessionController(
        config=config or make_fast_config(),
        provisioning=provisioning or FakeProvisioningClient(),
        rotation=rotation or FakeRotationService(),
        stages=stages if stages is not None else [ScriptedStage("Step1")],
        resource_loader=lambda: list(pool),
    )

