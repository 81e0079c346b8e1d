"""Data models for the script-analysis stages.

Internal values are dataclasses.  Each output type renders its wire shape
(camelCase keys, enum literals, one-decimal rounding) through ``to_dict()``;
that shape is what gets persisted and served, so field names here must not
drift from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


COMPLEXITY_LEVELS = (
    "Basic", "Standard", "Intermediate", "Advanced", "High-Complexity",
)

RELATION_TYPES = frozenset([
    "same_punchline_phrase", "thematic_callback",
    "character_callback", "situational_echo",
])

IMPACT_LEVELS = frozenset(["high", "medium", "low"])

TIERS = ("free", "pro", "expert")


def _drop_none(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None}


def to_jsonable(value: Any) -> Any:
    """Convert stage outputs (dataclasses, lists, dicts) to plain JSON values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Upstream parse output (inputs to every analysis stage)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Joke:
    """One detected joke.  Sequences of jokes are sorted by ``position``."""

    id: str
    text: str
    line_number: int
    position: int
    complexity: str = "Standard"
    page: Optional[int] = None
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> Joke:
        return cls(
            id=str(data.get("id", "")),
            text=data.get("text") or "",
            line_number=int(data.get("lineNumber") or 0),
            position=int(data.get("position", 0)),
            complexity=data.get("complexity", ""),
            page=data.get("page"),
            type=data.get("type"),
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "text": self.text,
            "lineNumber": self.line_number,
            "page": self.page,
            "position": self.position,
            "complexity": self.complexity,
            "type": self.type,
        })


@dataclass(frozen=True)
class TimelinePoint:
    """One unit of script progression."""

    position: int
    time: str
    page: int
    has_joke: bool = False
    joke_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> TimelinePoint:
        return cls(
            position=int(data.get("position", 0)),
            time=str(data.get("time", "")),
            page=int(data.get("page", 1)),
            has_joke=bool(data.get("hasJoke", False)),
            joke_id=None if data.get("jokeId") is None else str(data["jokeId"]),
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "position": self.position,
            "time": self.time,
            "page": self.page,
            "hasJoke": self.has_joke,
            "jokeId": self.joke_id,
        })


def coerce_jokes(items: Iterable[Any]) -> list[Joke]:
    """Accept ``Joke`` objects or their wire dicts."""
    return [j if isinstance(j, Joke) else Joke.from_dict(j) for j in items or []]


def coerce_timeline(items: Iterable[Any]) -> list[TimelinePoint]:
    return [
        p if isinstance(p, TimelinePoint) else TimelinePoint.from_dict(p)
        for p in items or []
    ]


# ---------------------------------------------------------------------------
# Stage 9: callback architecture
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CallbackSetup:
    line: str
    line_number: int
    page: int
    joke_id: str

    def to_dict(self) -> dict:
        return {
            "line": self.line,
            "lineNumber": self.line_number,
            "page": self.page,
            "jokeId": self.joke_id,
        }


@dataclass(frozen=True)
class CallbackReference:
    line_number: int
    page: int
    relation: str
    similarity: float

    def __post_init__(self):
        if self.relation not in RELATION_TYPES:
            raise ValueError(f"Unknown callback relation: {self.relation!r}")

    def to_dict(self) -> dict:
        return {
            "lineNumber": self.line_number,
            "page": self.page,
            "relation": self.relation,
            "similarity": self.similarity,
        }


@dataclass
class CallbackCluster:
    id: str
    setup: CallbackSetup
    references: list[CallbackReference] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "setup": self.setup.to_dict(),
            "references": [r.to_dict() for r in self.references],
        }


@dataclass(frozen=True)
class CallbackMetrics:
    callback_count: int = 0
    callback_frequency_percent: float = 0.0
    total_jokes: int = 0
    average_callbacks_per_setup: float = 0.0

    def to_dict(self) -> dict:
        return {
            "callbackCount": self.callback_count,
            "callbackFrequencyPercent": self.callback_frequency_percent,
            "totalJokes": self.total_jokes,
            "averageCallbacksPerSetup": self.average_callbacks_per_setup,
        }


@dataclass(frozen=True)
class MissedOpportunity:
    setup: str
    line_number: int
    page: int
    suggestion: str
    potential_impact: str

    def __post_init__(self):
        if self.potential_impact not in IMPACT_LEVELS:
            raise ValueError(f"Unknown impact level: {self.potential_impact!r}")

    def to_dict(self) -> dict:
        return {
            "setup": self.setup,
            "lineNumber": self.line_number,
            "page": self.page,
            "suggestion": self.suggestion,
            "potentialImpact": self.potential_impact,
        }


@dataclass
class CallbackAnalysis:
    """Stage 9 output."""

    callbacks: list[CallbackCluster] = field(default_factory=list)
    metrics: CallbackMetrics = field(default_factory=CallbackMetrics)
    missed_opportunities: list[MissedOpportunity] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "callbacks": [c.to_dict() for c in self.callbacks],
            "metrics": self.metrics.to_dict(),
            "missedOpportunities": [m.to_dict() for m in self.missed_opportunities],
        }


# ---------------------------------------------------------------------------
# Stage 10: engagement simulation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngagementPoint:
    position: int
    score: float
    time: str
    page: int

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "score": self.score,
            "time": self.time,
            "page": self.page,
        }


@dataclass(frozen=True)
class PeakMoment:
    position: int
    score: float
    description: str
    page: Optional[int] = None
    line_number: Optional[int] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "position": self.position,
            "score": self.score,
            "description": self.description,
            "page": self.page,
            "lineNumber": self.line_number,
        })


@dataclass(frozen=True)
class LowEngagementSegment:
    start: int
    end: int
    duration: str
    description: str
    average_score: float

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
            "description": self.description,
            "averageScore": self.average_score,
        }


@dataclass(frozen=True)
class EngagementMetrics:
    average_engagement: float = 0.0
    peak_engagement: float = 0.0
    lowest_engagement: float = 0.0
    volatility: float = 0.0

    def to_dict(self) -> dict:
        return {
            "averageEngagement": self.average_engagement,
            "peakEngagement": self.peak_engagement,
            "lowestEngagement": self.lowest_engagement,
            "volatility": self.volatility,
        }


@dataclass
class EngagementAnalysis:
    """Stage 10 output."""

    curve: list[EngagementPoint] = field(default_factory=list)
    peak_moments: list[PeakMoment] = field(default_factory=list)
    low_engagement_segments: list[LowEngagementSegment] = field(default_factory=list)
    metrics: EngagementMetrics = field(default_factory=EngagementMetrics)

    def to_dict(self) -> dict:
        return {
            "curve": [p.to_dict() for p in self.curve],
            "peakMoments": [p.to_dict() for p in self.peak_moments],
            "lowEngagementSegments": [s.to_dict() for s in self.low_engagement_segments],
            "metrics": self.metrics.to_dict(),
        }


# ---------------------------------------------------------------------------
# Stages 1 to 5: script summaries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScriptMetadata:
    total_lines: int
    total_pages: int
    estimated_duration: int

    def to_dict(self) -> dict:
        return {
            "totalLines": self.total_lines,
            "totalPages": self.total_pages,
            "estimatedDuration": self.estimated_duration,
        }


@dataclass(frozen=True)
class CoreMetrics:
    laughs_per_minute: float
    joke_density: float
    total_jokes: int
    average_joke_complexity: float

    def to_dict(self) -> dict:
        return {
            "laughsPerMinute": self.laughs_per_minute,
            "jokeDensity": self.joke_density,
            "totalJokes": self.total_jokes,
            "averageJokeComplexity": self.average_joke_complexity,
        }


@dataclass(frozen=True)
class RhythmPoint:
    position: int
    intensity: float
    time: str

    def to_dict(self) -> dict:
        return {"position": self.position, "intensity": self.intensity, "time": self.time}


@dataclass
class PacingAnalysis:
    """Stage 3 output.  ``average_time_between_jokes`` is in timeline units."""

    pacing_score: float = 0.0
    rhythm: list[RhythmPoint] = field(default_factory=list)
    average_time_between_jokes: float = 0.0

    def to_dict(self) -> dict:
        return {
            "pacingScore": self.pacing_score,
            "rhythm": [r.to_dict() for r in self.rhythm],
            "averageTimeBetweenJokes": self.average_time_between_jokes,
        }


@dataclass(frozen=True)
class DistributionPoint:
    position: int
    count: int
    page: int

    def to_dict(self) -> dict:
        return {"position": self.position, "count": self.count, "page": self.page}


@dataclass(frozen=True)
class ActBreakdown:
    act: int
    joke_count: int
    percentage: float

    def to_dict(self) -> dict:
        return {"act": self.act, "jokeCount": self.joke_count, "percentage": self.percentage}


@dataclass
class LaughDistribution:
    distribution: list[DistributionPoint] = field(default_factory=list)
    act_breakdown: list[ActBreakdown] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "distribution": [d.to_dict() for d in self.distribution],
            "actBreakdown": [a.to_dict() for a in self.act_breakdown],
        }


@dataclass(frozen=True)
class ComedyGap:
    id: str
    start: int
    end: int
    duration: int
    severity: str  # "low" | "medium" | "high" | "critical"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class RetentionCliff:
    position: int
    duration: int
    impact_score: float
    description: str

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "duration": self.duration,
            "impactScore": self.impact_score,
            "description": self.description,
        }


@dataclass
class GapDiagnosis:
    gaps: list[ComedyGap] = field(default_factory=list)
    retention_cliff: Optional[RetentionCliff] = None
    total_gaps: int = 0
    longest_gap: int = 0
    average_gap_length: float = 0.0

    def to_dict(self) -> dict:
        return {
            "gaps": [g.to_dict() for g in self.gaps],
            "retentionCliff": self.retention_cliff.to_dict() if self.retention_cliff else None,
            "gapMetrics": {
                "totalGaps": self.total_gaps,
                "longestGap": self.longest_gap,
                "averageGapLength": self.average_gap_length,
            },
        }


# ---------------------------------------------------------------------------
# Pipeline bookkeeping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage invocation.  Never mutated after creation."""

    stage_id: int
    success: bool
    duration: int  # milliseconds
    timestamp: str
    data: Any = None
    error: Optional[str] = None
    retryable: bool = False  # failure was "output not yet available"

    def to_dict(self) -> dict:
        return _drop_none({
            "stageId": self.stage_id,
            "success": self.success,
            "data": to_jsonable(self.data),
            "error": self.error,
            "duration": self.duration,
            "timestamp": self.timestamp,
        })


@dataclass
class StageMetrics:
    """Timing for one timed analysis call."""

    stage_name: str
    stage_kind: str  # "computed" | "delegated"
    duration_ms: int = 0
    stage_id: Optional[int] = None  # catalog stage that made the call
    ok: bool = True


@dataclass
class PipelineResult:
    """Complete output of one pipeline run."""

    outputs: dict = field(default_factory=dict)
    results: list[StageResult] = field(default_factory=list)
    report: dict = field(default_factory=dict)
