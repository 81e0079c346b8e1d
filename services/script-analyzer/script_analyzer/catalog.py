"""The product's stage catalog.

Stages 1 to 5, 9 and 10 are computed in-process from the segmented
jokes and timeline.  The rest are delegated: to an HTTP endpoint when one
is configured for the stage id, otherwise to whatever an external worker
already stored for the job.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from .formatting import now_iso
from .models import coerce_jokes, coerce_timeline
from .registry import Stage, StageDefinition, StageRegistry
from .stages.callbacks import detect_callbacks
from .stages.engagement import simulate_engagement
from .stages.remote import RemoteStage, StoredOutputStage
from .stages.script_metrics import (
    core_metrics,
    diagnose_gaps,
    laugh_distribution,
    pacing_analysis,
    script_metadata,
)
from .storage import StageStore

log = logging.getLogger(__name__)

Compute = Callable[[Mapping[str, Any]], Any]


class ComputedStage:
    """Runs a local analysis and, when the run has a ``jobId``, stores the result."""

    def __init__(
        self,
        stage_id: int,
        compute: Compute,
        store: Optional[StageStore] = None,
    ):
        self.stage_id = stage_id
        self.compute = compute
        self.store = store

    async def run(self, inputs: Mapping[str, Any]) -> Any:
        output = self.compute(inputs)
        job_id = inputs.get("jobId")
        if self.store is not None and job_id:
            await self.store.write_stage_output(job_id, self.stage_id, output, now_iso())
        return output


def _jokes(inputs: Mapping[str, Any]):
    return coerce_jokes(inputs.get("jokes"))


def _timeline(inputs: Mapping[str, Any]):
    return coerce_timeline(inputs.get("timeline"))


_COMPUTE: dict[int, Compute] = {
    1: lambda inputs: script_metadata(inputs["scriptText"]),
    2: lambda inputs: core_metrics(_jokes(inputs), _timeline(inputs)),
    3: lambda inputs: pacing_analysis(_jokes(inputs), _timeline(inputs)),
    4: lambda inputs: laugh_distribution(_jokes(inputs), _timeline(inputs)),
    5: lambda inputs: diagnose_gaps(_jokes(inputs), _timeline(inputs)),
    9: lambda inputs: detect_callbacks(
        _jokes(inputs), inputs.get("scriptText", ""), _timeline(inputs),
    ),
    10: lambda inputs: simulate_engagement(
        _jokes(inputs), _timeline(inputs), inputs.get("gaps"),
    ),
}

# Stages whose outputs are persisted for later reads by job id.
_PERSISTED = frozenset([9, 10])

# (id, name, title, description, required inputs, output key, tier, seconds)
STAGES = (
    (1, "parse_and_detect", "Script Parsing & Joke Detection",
     "Parse script and identify jokes, punchlines, and comedic elements",
     ("scriptText",), "scriptMetadata", "free", 5),
    (2, "core_metrics", "Core Metrics Calculation",
     "Calculate laughs per minute, joke density, and pacing metrics",
     ("jokes", "timeline"), "metrics", "free", 2),
    (3, "pacing_analysis", "Pacing Analysis",
     "Analyze comedic timing and rhythm throughout the script",
     ("jokes", "timeline"), "pacing", "free", 3),
    (4, "laugh_distribution", "Laugh Distribution",
     "Map where laughs occur throughout the script",
     ("jokes", "timeline"), "distribution", "free", 2),
    (5, "gap_diagnosis", "Comedy Gap Diagnosis",
     "Identify humor gaps and retention cliffs",
     ("jokes", "timeline", "distribution"), "gaps", "pro", 3),
    (6, "gap_punchups", "Targeted Gap Punch-Ups",
     "Generate punch-up suggestions for identified gaps",
     ("gaps", "scriptText", "jokes"), "punchups", "pro", 8),
    (7, "joke_quality", "Joke Quality Check & Classification",
     "Evaluate and classify jokes by quality and type",
     ("jokes",), "jokeQuality", "pro", 5),
    (8, "character_analytics", "Character & Relationship Analytics",
     "Analyze humor distribution across characters",
     ("jokes", "scriptText"), "characterAnalysis", "pro", 4),
    (9, "callback_mapping", "Callback Architecture Mapping",
     "Map callbacks and identify missed opportunities",
     ("jokes", "scriptText", "timeline"), "callbackAnalysis", "pro", 6),
    (10, "engagement_simulation", "Audience Simulation & Engagement",
     "Simulate audience engagement throughout the script",
     ("jokes", "timeline", "gaps"), "audienceEngagement", "pro", 4),
    (11, "collaborative_editing", "Real-Time Collaborative Editing",
     "Enable multi-user real-time script editing",
     ("scriptId", "sessionId"), "collaborationSession", "expert", 1),
    (12, "writers_chat", "Writer's Room Chat",
     "Live chat for collaborators",
     ("sessionId",), "chatSession", "expert", 1),
    (13, "brainstorm_board", "Brainstorm Board",
     "Interactive whiteboard for idea brainstorming",
     ("sessionId",), "brainstormBoard", "expert", 1),
    (14, "collaborative_commenting", "Collaborative Commenting",
     "Anchored comments on specific script sections",
     ("scriptId",), "comments", "expert", 1),
)


def build_default_registry(
    store: StageStore,
    endpoints: Optional[Mapping[int, str]] = None,
    timeout: Optional[float] = None,
) -> StageRegistry:
    """Register every catalog stage against *store*.

    *endpoints* maps delegated stage ids to base URLs of remote executors.
    """
    endpoints = endpoints or {}
    registry = StageRegistry()

    for stage_id, name, title, description, required, output_key, tier, seconds in STAGES:
        registry.register(StageDefinition(
            id=stage_id,
            name=name,
            title=title,
            description=description,
            required_inputs=frozenset(required),
            output_key=output_key,
            tier=tier,
            estimated_duration=seconds,
            executor=_executor_for(stage_id, name, title, store, endpoints, timeout),
        ))

    log.info("All stages registered: %d (%d remote)",
             len(registry), sum(1 for sid in endpoints if sid not in _COMPUTE))
    return registry


def _executor_for(
    stage_id: int,
    name: str,
    title: str,
    store: StageStore,
    endpoints: Mapping[int, str],
    timeout: Optional[float],
) -> Stage:
    if stage_id in _COMPUTE:
        return ComputedStage(
            stage_id, _COMPUTE[stage_id],
            store if stage_id in _PERSISTED else None,
        )
    if stage_id in endpoints:
        return RemoteStage(name, endpoints[stage_id], timeout=timeout)
    return StoredOutputStage(store, stage_id, title)
