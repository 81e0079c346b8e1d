"""Stage 10 — Audience Simulation & Engagement.

Builds a predicted-attention curve over the script: the timeline is cut
into roughly fifty equal windows, each scored from a 5.0 baseline plus a
weight per joke, then damped by how long the audience has gone without a
laugh.  Peaks, low stretches and volatility are derived from that curve.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from ..formatting import format_duration, format_time, page_for, round1
from ..models import (
    EngagementAnalysis,
    EngagementMetrics,
    EngagementPoint,
    Joke,
    LowEngagementSegment,
    PeakMoment,
    TimelinePoint,
)
from ..timing import timed_stage

log = logging.getLogger(__name__)

DEFAULT_DURATION = 100
TARGET_POINTS = 50
BASELINE_SCORE = 5.0
MAX_SCORE = 10.0

COMPLEXITY_WEIGHTS = {
    "High-Complexity": 2.0,
    "Advanced": 1.5,
    "Intermediate": 1.0,
    "Standard": 0.7,
    "Basic": 0.5,
}
DEFAULT_WEIGHT = 1.0

# Decay applied by time since the last joke before a window opens.
NO_PRIOR_JOKE_DECAY = 0.8
LONG_SILENCE = 20
LONG_SILENCE_DECAY = 0.5
SHORT_SILENCE = 10
SHORT_SILENCE_DECAY = 0.7

PEAK_COUNT = 3
PEAK_THRESHOLD = 7.5
LOW_THRESHOLD = 4.0
MIN_LOW_SEGMENTS = 2


@timed_stage("engagement_simulation", "computed")
def simulate_engagement(
    jokes: Sequence[Joke],
    timeline: Sequence[TimelinePoint] = (),
    gaps: Optional[Any] = None,
) -> EngagementAnalysis:
    """Simulate audience engagement for position-sorted *jokes*.

    *gaps* (the gap-diagnosis output) is accepted for callers that pass
    the full upstream state; the curve itself is driven by joke spacing.
    """
    duration = len(timeline) or DEFAULT_DURATION
    segment_size = max(1, duration // TARGET_POINTS)

    curve = _build_curve(jokes, duration, segment_size)
    peaks = _find_peaks(curve, jokes, segment_size)
    lows = _find_low_segments(curve, segment_size)

    scores = [p.score for p in curve]
    metrics = EngagementMetrics(
        average_engagement=round1(sum(scores) / len(scores)),
        peak_engagement=round1(max(scores)),
        lowest_engagement=round1(min(scores)),
        volatility=round1(volatility(scores)),
    )

    log.info("Engagement simulation: %d points (segment=%d), %d peaks, %d low segments, "
             "avg=%.1f volatility=%.1f",
             len(curve), segment_size, len(peaks), len(lows),
             metrics.average_engagement, metrics.volatility)

    return EngagementAnalysis(
        curve=curve,
        peak_moments=peaks,
        low_engagement_segments=lows,
        metrics=metrics,
    )


def build_curve_preview(
    jokes: Sequence[Joke],
    timeline: Sequence[TimelinePoint] = (),
) -> list[EngagementPoint]:
    """Cheap preview curve: no decay, and only High-Complexity jokes weigh extra."""
    duration = len(timeline) or DEFAULT_DURATION
    segment_size = max(1, duration // TARGET_POINTS)

    curve: list[EngagementPoint] = []
    for start in range(0, duration, segment_size):
        end = min(start + segment_size, duration)
        score = BASELINE_SCORE
        for joke in jokes:
            if start <= joke.position < end:
                score += 2.0 if joke.complexity == "High-Complexity" else 1.0
        curve.append(_point(start, score))
    return curve


def joke_weight(joke: Joke) -> float:
    return COMPLEXITY_WEIGHTS.get(joke.complexity, DEFAULT_WEIGHT)


def decay_factor(position: int, jokes: Sequence[Joke]) -> float:
    """Damping for a window opening at *position*, from the last earlier joke."""
    earlier = [j.position for j in jokes if j.position < position]
    if not earlier:
        return NO_PRIOR_JOKE_DECAY

    since_last = position - max(earlier)
    if since_last > LONG_SILENCE:
        return LONG_SILENCE_DECAY
    if since_last > SHORT_SILENCE:
        return SHORT_SILENCE_DECAY
    return 1.0


def volatility(scores: Sequence[float]) -> float:
    """Mean absolute change between consecutive scores."""
    if len(scores) < 2:
        return 0.0
    total = sum(abs(b - a) for a, b in zip(scores, scores[1:]))
    return total / (len(scores) - 1)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _point(position: int, score: float) -> EngagementPoint:
    score = min(MAX_SCORE, max(0.0, score))
    return EngagementPoint(
        position=position,
        score=round1(score),
        time=format_time(position),
        page=page_for(position),
    )


def _build_curve(
    jokes: Sequence[Joke], duration: int, segment_size: int,
) -> list[EngagementPoint]:
    curve: list[EngagementPoint] = []
    for start in range(0, duration, segment_size):
        end = min(start + segment_size, duration)
        score = BASELINE_SCORE
        for joke in jokes:
            if start <= joke.position < end:
                score += joke_weight(joke)
        score *= decay_factor(start, jokes)
        curve.append(_point(start, score))
    return curve


def _find_peaks(
    curve: list[EngagementPoint], jokes: Sequence[Joke], segment_size: int,
) -> list[PeakMoment]:
    # sorted() is stable, so equal scores keep curve order.
    ranked = sorted(curve, key=lambda p: p.score, reverse=True)[:PEAK_COUNT]

    peaks: list[PeakMoment] = []
    for point in ranked:
        if point.score < PEAK_THRESHOLD:
            continue
        nearby = [j for j in jokes if abs(j.position - point.position) < segment_size]
        peaks.append(PeakMoment(
            position=point.position,
            score=point.score,
            description=_peak_description(point, len(nearby)),
            page=point.page,
            line_number=nearby[0].line_number if nearby else None,
        ))
    return peaks


def _find_low_segments(
    curve: list[EngagementPoint], segment_size: int,
) -> list[LowEngagementSegment]:
    """Runs below ``LOW_THRESHOLD`` that recover before the script ends.

    A run is closed by the first point back at or above the threshold; a
    run still open at the last point is not reported.
    """
    segments: list[LowEngagementSegment] = []
    run: list[EngagementPoint] = []

    for point in curve:
        if point.score < LOW_THRESHOLD:
            run.append(point)
            continue
        if run:
            _close_low_run(segments, run, point.position, segment_size)
            run = []

    return segments


def _close_low_run(
    segments: list[LowEngagementSegment],
    run: list[EngagementPoint],
    end: int,
    segment_size: int,
) -> None:
    start = run[0].position
    span = end - start
    if span < segment_size * MIN_LOW_SEGMENTS:
        return
    average = sum(p.score for p in run) / len(run)
    segments.append(LowEngagementSegment(
        start=start,
        end=end,
        duration=format_duration(span),
        description=(
            f"Low engagement period from {format_time(start)} to {format_time(end)}"
            " - consider adding jokes or callbacks here"
        ),
        average_score=round1(average),
    ))


def _peak_description(point: EngagementPoint, joke_count: int) -> str:
    if joke_count == 0:
        return f"Strong engagement around {point.time}"
    return (
        f"Big laugh{'s' if joke_count > 1 else ''} around {point.time} "
        f"with {joke_count} joke{'s' if joke_count != 1 else ''} in quick succession"
    )
