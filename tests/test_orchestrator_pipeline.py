"""Tests for leasehold/orchestrator/pipeline.py: sequential stage chaining."""

import asyncio

import pytest

from leasehold.core.models import StageOutcome, StageResult
from leasehold.orchestrator.metrics import PipelineMetrics
from leasehold.orchestrator.pipeline import Pipeline, PipelineResult
from tests.conftest import ScriptedStage


class RaisingStage:
    """Satisfies the Stage protocol without BaseStage's error handling."""

    name = "Raising"

    async def run(self, handle, params):
        raise RuntimeError("unexpected error")


class SilentStage:
    """Satisfies the Stage protocol but returns nothing."""

    name = "Silent"

    async def run(self, handle, params):
        return None


@pytest.fixture
def metrics():
    return PipelineMetrics()


def _execute(pipeline, **kwargs):
    run = pipeline.metrics.start_run(slot=0, attempt_number=1, resource_index=0)
    result = asyncio.run(pipeline.execute(run, handle={"ctx": 1}, params={}, **kwargs))
    return run, result


class TestPipelineBuild:
    def test_add_stage_chains(self, metrics):
        pipeline = Pipeline(metrics).add_stage(ScriptedStage("A")).add_stage(ScriptedStage("B"))
        assert pipeline.stage_names == ["A", "B"]
        assert len(pipeline) == 2


class TestPipelineExecute:
    def test_all_succeed(self, metrics):
        pipeline = Pipeline(metrics)
        pipeline.add_stage(ScriptedStage("A", data={"email": "a@x"}))
        pipeline.add_stage(ScriptedStage("B", data={"token": "t"}))

        run, result = _execute(pipeline)

        assert result.success
        assert not result.cancelled
        assert [r.stage_name for r in result.stage_results] == ["A", "B"]
        assert result.artifacts == {"email": "a@x", "token": "t"}
        assert run.outcome == "success"
        assert len(run.stage_metrics) == 2

    def test_stops_at_first_soft_fail(self, metrics):
        later = ScriptedStage("C")
        pipeline = Pipeline(metrics)
        pipeline.add_stage(ScriptedStage("A"))
        pipeline.add_stage(ScriptedStage("B", default=StageOutcome.SOFT_FAIL))
        pipeline.add_stage(later)

        run, result = _execute(pipeline)

        assert not result.success
        assert result.failed_stage == "B"
        assert result.final_result.outcome == StageOutcome.SOFT_FAIL
        assert later.calls == 0
        assert run.outcome == "failure"
        assert run.failed_stage == "B"

    def test_hard_fail_stops(self, metrics):
        pipeline = Pipeline(metrics).add_stage(ScriptedStage("A", default=StageOutcome.HARD_FAIL))
        _, result = _execute(pipeline)
        assert result.failed_stage == "A"
        assert result.final_result.outcome == StageOutcome.HARD_FAIL

    def test_raised_exception_becomes_hard_fail(self, metrics):
        pipeline = Pipeline(metrics).add_stage(RaisingStage())
        _, result = _execute(pipeline)
        assert not result.success
        assert result.final_result.outcome == StageOutcome.HARD_FAIL
        assert "RuntimeError" in result.final_result.detail

    def test_non_result_return_becomes_hard_fail(self, metrics):
        later = ScriptedStage("B")
        pipeline = Pipeline(metrics).add_stage(SilentStage()).add_stage(later)

        run, result = _execute(pipeline)

        assert not result.success
        assert result.failed_stage == "Silent"
        assert result.final_result.outcome == StageOutcome.HARD_FAIL
        assert "returned NoneType" in result.final_result.detail
        assert later.calls == 0
        assert run.outcome == "failure"

    def test_should_stop_before_first_stage(self, metrics):
        stage = ScriptedStage("A")
        pipeline = Pipeline(metrics).add_stage(stage)
        run, result = _execute(pipeline, should_stop=lambda: True)
        assert result.cancelled
        assert stage.calls == 0
        assert run.outcome == "cancelled"

    def test_should_stop_between_stages(self, metrics):
        first = ScriptedStage("A")
        second = ScriptedStage("B")
        pipeline = Pipeline(metrics).add_stage(first).add_stage(second)

        _, result = _execute(pipeline, should_stop=lambda: first.calls > 0)

        assert result.cancelled
        assert first.calls == 1
        assert second.calls == 0
        assert len(result.stage_results) == 1

    def test_on_stage_callback(self, metrics):
        seen = []
        pipeline = Pipeline(metrics).add_stage(ScriptedStage("A")).add_stage(ScriptedStage("B"))
        _execute(pipeline, on_stage=lambda pos, total, name: seen.append((pos, total, name)))
        assert seen == [(1, 2, "A"), (2, 2, "B")]


class TestPipelineResult:
    def test_empty(self):
        result = PipelineResult(success=True)
        assert result.final_result is None
        assert result.artifacts == {}

    def test_later_stage_wins_artifact_clash(self):
        results = [
            StageResult(stage_name="A", outcome=StageOutcome.SUCCESS, data={"k": 1}),
            StageResult(stage_name="B", outcome=StageOutcome.SUCCESS, data={"k": 2}),
        ]
        assert PipelineResult(success=True, stage_results=results).artifacts == {"k": 2}
