"""Pipeline sequencer.

Runs registered stages one at a time in the order requested.  Each
stage's output is merged into a running state under the stage's
``output_key``, so later stages see everything computed before them.
The first failing stage stops the run.

Per-stage lifecycle::

    Pending -> Validating -> Running -> Succeeded | Failed

A stage with missing inputs goes straight from Validating to Failed
without its executor being called.
"""

from __future__ import annotations

import logging
import time
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence

from .errors import (
    DataAbsentError,
    PipelineError,
    StageNotReadyError,
    StageValidationError,
)
from .formatting import now_iso
from .models import PipelineResult, StageMetrics, StageResult
from .registry import StageRegistry
from .timing import collect_metrics, elapsed_ms, stage_scope

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, StageResult], None]


async def execute_stage(
    registry: StageRegistry,
    stage_id: int,
    inputs: Mapping[str, Any],
) -> StageResult:
    """Validate and run one stage.  Never raises; failures become results."""
    stage = registry.get(stage_id)
    if stage is None:
        return _failed(stage_id, f"Stage {stage_id} not found")

    log.debug("Stage %d (%s): validating", stage_id, stage.name)
    missing = stage.required_inputs.difference(inputs)
    if missing:
        err = StageValidationError(stage_id, missing)
        log.warning("Stage %d (%s): %s", stage_id, stage.name, err)
        return _failed(stage_id, str(err))

    log.debug("Stage %d (%s): running", stage_id, stage.name)
    t0 = time.monotonic_ns()
    try:
        with stage_scope(stage_id):
            data = await stage.executor.run(MappingProxyType(dict(inputs)))
    except Exception as exc:
        duration = elapsed_ms(t0)
        message = str(exc) or "Unknown error"
        log.warning("Stage %d (%s) failed after %d ms: %s",
                    stage_id, stage.name, duration, message)
        return _failed(stage_id, message, duration,
                       retryable=isinstance(exc, DataAbsentError))

    duration = elapsed_ms(t0)
    log.info("Stage %d (%s) succeeded in %d ms", stage_id, stage.name, duration)
    return StageResult(
        stage_id=stage_id,
        success=True,
        data=data,
        duration=duration,
        timestamp=now_iso(),
    )


async def execute_sequence(
    registry: StageRegistry,
    stage_ids: Sequence[int],
    initial_inputs: Mapping[str, Any],
    on_progress: Optional[ProgressCallback] = None,
) -> dict[str, Any]:
    """Run *stage_ids* strictly in the given order and return the final state.

    Raises ``PipelineError`` (``StageNotReadyError`` when the stage's data
    was not available yet) on the first failure; no later stage runs.
    """
    state: dict[str, Any] = dict(initial_inputs)

    for stage_id in stage_ids:
        result = await execute_stage(registry, stage_id, state)

        if on_progress is not None:
            on_progress(stage_id, result)

        if not result.success:
            error_cls = StageNotReadyError if result.retryable else PipelineError
            raise error_cls(stage_id, result)

        stage = registry.get(stage_id)
        if result.data is not None:
            state[stage.output_key] = result.data

    return state


async def run_pipeline(
    registry: StageRegistry,
    stage_ids: Sequence[int],
    initial_inputs: Mapping[str, Any],
    on_progress: Optional[ProgressCallback] = None,
) -> PipelineResult:
    """Run a sequence and return its outputs with a per-stage timing report.

    Failures propagate exactly as from ``execute_sequence``; pass
    *on_progress* to see the stages that finished before the failure.
    """
    results: list[StageResult] = []

    def _track(stage_id: int, result: StageResult) -> None:
        results.append(result)
        if on_progress is not None:
            on_progress(stage_id, result)

    with collect_metrics() as metrics:
        outputs = await execute_sequence(registry, stage_ids, initial_inputs, _track)

    report = _build_report(results, metrics)

    log.info(
        "Pipeline complete: %d stages | total=%dms (computed=%dms, delegated=%dms)",
        len(results), report["total_duration_ms"],
        report["computed_duration_ms"], report["delegated_duration_ms"],
    )

    return PipelineResult(outputs=outputs, results=results, report=report)


def _failed(
    stage_id: int, error: str, duration: int = 0, retryable: bool = False,
) -> StageResult:
    return StageResult(
        stage_id=stage_id,
        success=False,
        error=error,
        duration=duration,
        timestamp=now_iso(),
        retryable=retryable,
    )


def _build_report(results: list[StageResult], metrics: list[StageMetrics]) -> dict:
    """Build the structured report dict from stage results and timings."""
    total_ms = sum(r.duration for r in results)
    computed_ms = sum(m.duration_ms for m in metrics if m.stage_kind == "computed")
    delegated_ms = sum(m.duration_ms for m in metrics if m.stage_kind == "delegated")

    return {
        "total_duration_ms": total_ms,
        "computed_duration_ms": computed_ms,
        "delegated_duration_ms": delegated_ms,
        "stages": [
            {
                "stage_id": r.stage_id,
                "success": r.success,
                "duration_ms": r.duration,
                "timestamp": r.timestamp,
            }
            for r in results
        ],
        "analyses": [
            {
                "stage_id": m.stage_id,
                "name": m.stage_name,
                "kind": m.stage_kind,
                "duration_ms": m.duration_ms,
                "ok": m.ok,
            }
            for m in metrics
        ],
    }
