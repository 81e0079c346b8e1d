"""Tests for stage execution and sequencing."""

import pytest

from conftest import make_joke, make_timeline
from script_analyzer.catalog import build_default_registry
from script_analyzer.errors import DataAbsentError, PipelineError, StageNotReadyError
from script_analyzer.models import CallbackAnalysis, EngagementAnalysis, GapDiagnosis, PacingAnalysis
from script_analyzer.pipeline import execute_sequence, execute_stage, run_pipeline
from script_analyzer.registry import FunctionStage, StageDefinition, StageRegistry


class Recorder:
    """Stage executor that remembers every call and returns a fixed value."""

    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.calls = []

    async def run(self, inputs):
        self.calls.append(dict(inputs))
        if self.error is not None:
            raise self.error
        return self.value


def _register(registry, stage_id, executor, required=(), output_key=None):
    registry.register(StageDefinition(
        id=stage_id,
        name=f"stage_{stage_id}",
        title=f"Stage {stage_id}",
        executor=executor,
        required_inputs=frozenset(required),
        output_key=output_key or f"out_{stage_id}",
    ))


# ──────────────────────────────────────────────────────────────────────
# execute_stage
# ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unknown_stage_fails():
    result = await execute_stage(StageRegistry(), 99, {})
    assert not result.success
    assert result.error == "Stage 99 not found"
    assert result.duration == 0


@pytest.mark.asyncio
async def test_missing_inputs_are_all_named_and_executor_skipped():
    registry = StageRegistry()
    recorder = Recorder("x")
    _register(registry, 1, recorder, required=("timeline", "jokes", "scriptText"))

    result = await execute_stage(registry, 1, {"jokes": []})

    assert not result.success
    assert result.error == "Missing required inputs: scriptText, timeline"
    assert result.duration == 0
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_success_carries_data_and_timestamp():
    registry = StageRegistry()
    _register(registry, 1, Recorder({"answer": 42}), required=("a",))

    result = await execute_stage(registry, 1, {"a": 1})

    assert result.success
    assert result.data == {"answer": 42}
    assert result.error is None
    assert result.duration >= 0
    assert result.timestamp.endswith("Z")


@pytest.mark.asyncio
async def test_executor_error_message_preserved():
    registry = StageRegistry()
    _register(registry, 1, Recorder(error=RuntimeError("storage offline")))
    _register(registry, 2, Recorder(error=RuntimeError()))

    assert (await execute_stage(registry, 1, {})).error == "storage offline"
    assert (await execute_stage(registry, 2, {})).error == "Unknown error"


@pytest.mark.asyncio
async def test_executor_cannot_mutate_inputs():
    async def mutate(inputs):
        inputs["sneaky"] = True

    registry = StageRegistry()
    _register(registry, 1, FunctionStage(mutate))
    state = {"a": 1}

    result = await execute_stage(registry, 1, state)

    assert not result.success
    assert state == {"a": 1}


@pytest.mark.asyncio
async def test_data_absent_is_retryable():
    registry = StageRegistry()
    _register(registry, 1, Recorder(error=DataAbsentError("Pacing analysis not yet available")))

    result = await execute_stage(registry, 1, {})
    assert result.retryable
    assert result.error == "Pacing analysis not yet available"


# ──────────────────────────────────────────────────────────────────────
# execute_sequence
# ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_outputs_thread_forward_in_requested_order():
    registry = StageRegistry()
    first = Recorder("from-3")
    second = Recorder("from-1")
    _register(registry, 3, first, output_key="x")
    _register(registry, 1, second, required=("x",), output_key="y")

    initial = {"seed": True}
    state = await execute_sequence(registry, [3, 1], initial)

    assert state == {"seed": True, "x": "from-3", "y": "from-1"}
    assert second.calls == [{"seed": True, "x": "from-3"}]
    assert initial == {"seed": True}


@pytest.mark.asyncio
async def test_first_failure_aborts_the_sequence():
    registry = StageRegistry()
    a, b, c = Recorder("a"), Recorder("b"), Recorder("c")
    _register(registry, 1, a)
    _register(registry, 2, b, required=("missing",))
    _register(registry, 3, c)
    progress = []

    with pytest.raises(PipelineError) as excinfo:
        await execute_sequence(registry, [1, 2, 3], {}, lambda sid, r: progress.append((sid, r.success)))

    assert excinfo.value.stage_id == 2
    assert excinfo.value.error == "Missing required inputs: missing"
    assert str(excinfo.value) == "Stage 2 failed: Missing required inputs: missing"
    assert not isinstance(excinfo.value, StageNotReadyError)
    assert progress == [(1, True), (2, False)]
    assert len(a.calls) == 1
    assert c.calls == []


@pytest.mark.asyncio
async def test_not_ready_stage_raises_distinct_error():
    registry = StageRegistry()
    _register(registry, 1, Recorder(error=DataAbsentError("not yet available")))

    with pytest.raises(StageNotReadyError) as excinfo:
        await execute_sequence(registry, [1], {})
    assert excinfo.value.result.retryable


@pytest.mark.asyncio
async def test_none_output_is_not_merged():
    registry = StageRegistry()
    _register(registry, 1, Recorder(None), output_key="nothing")
    state = await execute_sequence(registry, [1], {"a": 1})
    assert state == {"a": 1}


# ──────────────────────────────────────────────────────────────────────
# Default catalog end to end
# ──────────────────────────────────────────────────────────────────────


def _script_inputs(job_id="job-1"):
    jokes = [
        make_joke(2, "The dog ate my homework again", complexity="Advanced"),
        make_joke(12, "I always forget where I parked", complexity="Basic"),
        make_joke(14, "The dog ate my homework, again!", complexity="High-Complexity"),
        make_joke(15, "Gary, the dog ate my car", complexity="High-Complexity"),
        make_joke(70, "Remember when Gary lost the boat?", complexity="Standard"),
    ]
    return {
        "jobId": job_id,
        "scriptText": "\n".join(j.text for j in jokes),
        "jokes": jokes,
        "timeline": make_timeline(100, [j.position for j in jokes]),
    }


@pytest.mark.asyncio
async def test_catalog_run_produces_typed_outputs_and_persists(store):
    registry = build_default_registry(store)

    result = await run_pipeline(registry, [1, 2, 4, 5, 9, 10], _script_inputs())

    outputs = result.outputs
    assert outputs["scriptMetadata"].total_lines == 5
    assert outputs["metrics"].total_jokes == 5
    assert isinstance(outputs["gaps"], GapDiagnosis)
    assert isinstance(outputs["callbackAnalysis"], CallbackAnalysis)
    assert isinstance(outputs["audienceEngagement"], EngagementAnalysis)
    assert outputs["callbackAnalysis"].metrics.callback_count >= 1

    assert [r.stage_id for r in result.results] == [1, 2, 4, 5, 9, 10]
    assert [s["stage_id"] for s in result.report["stages"]] == [1, 2, 4, 5, 9, 10]
    names = [a["name"] for a in result.report["analyses"]]
    assert "callback_mapping" in names and "engagement_simulation" in names
    by_name = {a["name"]: a for a in result.report["analyses"]}
    assert by_name["callback_mapping"]["stage_id"] == 9
    assert by_name["engagement_simulation"]["stage_id"] == 10
    assert by_name["gap_diagnosis"]["ok"] is True

    stored = await store.read_stage_output("job-1", 9)
    assert stored == outputs["callbackAnalysis"].to_dict()
    assert await store.read_completed_at("job-1", 10) is not None
    assert await store.read_stage_output("job-1", 2) is None


@pytest.mark.asyncio
async def test_engagement_needs_gap_stage_first(store):
    registry = build_default_registry(store)
    with pytest.raises(PipelineError, match="Missing required inputs: gaps"):
        await run_pipeline(registry, [10], _script_inputs())


@pytest.mark.asyncio
async def test_delegated_stage_waits_for_stored_output(store):
    registry = build_default_registry(store)
    inputs = _script_inputs("job-2")

    with pytest.raises(StageNotReadyError, match="Joke Quality Check & Classification not yet available"):
        await execute_sequence(registry, [7], inputs)

    await store.write_stage_output("job-2", 7, {"jokes": [], "flaggedCount": 0}, "2025-01-01T00:00:00.000Z")
    state = await execute_sequence(registry, [7], inputs)
    assert state["jokeQuality"] == {"jokes": [], "flaggedCount": 0}


@pytest.mark.asyncio
async def test_free_tier_stages_run_without_remote_workers(store):
    registry = build_default_registry(store)

    state = await execute_sequence(registry, [1, 2, 3, 4], _script_inputs("job-3"))

    pacing = state["pacing"]
    assert isinstance(pacing, PacingAnalysis)
    assert [r.position for r in pacing.rhythm] == [2, 12, 14, 15, 70]
    assert pacing.average_time_between_jokes == 17.0
