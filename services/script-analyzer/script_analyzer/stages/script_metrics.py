"""Stages 1 to 5 — structural summaries of a parsed script.

Counting rules only: script size, joke rate, rhythm, where the laughs
land and where they stop.  All positions are timeline units (ten per page).
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from ..formatting import UNITS_PER_MINUTE, format_duration, format_time, page_for, round1
from ..models import (
    COMPLEXITY_LEVELS,
    ActBreakdown,
    ComedyGap,
    CoreMetrics,
    DistributionPoint,
    GapDiagnosis,
    Joke,
    LaughDistribution,
    PacingAnalysis,
    RetentionCliff,
    RhythmPoint,
    ScriptMetadata,
    TimelinePoint,
)
from ..timing import timed_stage

log = logging.getLogger(__name__)

DEFAULT_DURATION = 100
LINES_PER_PAGE = 55
ACT_COUNT = 3
MAX_INTENSITY = 10.0

GAP_THRESHOLD = 10
# (minimum length, severity), checked top-down.
GAP_SEVERITIES = (
    (40, "critical"),
    (30, "high"),
    (20, "medium"),
)
CLIFF_SEVERITIES = frozenset(["high", "critical"])


@timed_stage("parse_and_detect", "computed")
def script_metadata(script_text: str) -> ScriptMetadata:
    """Size of the script: non-blank lines, pages, minutes (a page a minute)."""
    total_lines = sum(1 for line in (script_text or "").splitlines() if line.strip())
    total_pages = math.ceil(total_lines / LINES_PER_PAGE)
    return ScriptMetadata(
        total_lines=total_lines,
        total_pages=total_pages,
        estimated_duration=total_pages,
    )


@timed_stage("core_metrics", "computed")
def core_metrics(
    jokes: Sequence[Joke], timeline: Sequence[TimelinePoint] = (),
) -> CoreMetrics:
    duration = len(timeline) or DEFAULT_DURATION
    minutes = duration / UNITS_PER_MINUTE

    ranks = [
        COMPLEXITY_LEVELS.index(j.complexity) + 1
        for j in jokes if j.complexity in COMPLEXITY_LEVELS
    ]

    return CoreMetrics(
        laughs_per_minute=round1(len(jokes) / minutes),
        joke_density=round1(len(jokes) / duration * 100),
        total_jokes=len(jokes),
        average_joke_complexity=round1(sum(ranks) / len(ranks)) if ranks else 0.0,
    )


@timed_stage("pacing_analysis", "computed")
def pacing_analysis(
    jokes: Sequence[Joke], timeline: Sequence[TimelinePoint] = (),
) -> PacingAnalysis:
    """Rhythm of the script: one intensity reading per joke.

    A joke's intensity falls off with the silence before it: 10 for a joke
    right on the previous one, 5 after a full minute, and so on.  The first
    joke is measured from the top of the script.  The pacing score is the
    mean intensity.
    """
    duration = len(timeline) or DEFAULT_DURATION
    positions = sorted(j.position for j in jokes if 0 <= j.position < duration)

    rhythm: list[RhythmPoint] = []
    previous = 0
    for position in positions:
        silence = position - previous
        rhythm.append(RhythmPoint(
            position=position,
            intensity=round1(MAX_INTENSITY * UNITS_PER_MINUTE / (UNITS_PER_MINUTE + silence)),
            time=format_time(position),
        ))
        previous = position

    spacing = [b - a for a, b in zip(positions, positions[1:])]
    intensities = [r.intensity for r in rhythm]
    out = PacingAnalysis(
        pacing_score=round1(sum(intensities) / len(intensities)) if rhythm else 0.0,
        rhythm=rhythm,
        average_time_between_jokes=round1(sum(spacing) / len(spacing)) if spacing else 0.0,
    )
    log.info("Pacing analysis: %d jokes, score=%.1f, avg spacing=%.1f",
             len(rhythm), out.pacing_score, out.average_time_between_jokes)
    return out


@timed_stage("laugh_distribution", "computed")
def laugh_distribution(
    jokes: Sequence[Joke], timeline: Sequence[TimelinePoint] = (),
) -> LaughDistribution:
    """Joke counts per page and per act (the script split in thirds)."""
    duration = len(timeline) or DEFAULT_DURATION
    pages = page_for(duration - 1)

    per_page = [0] * pages
    per_act = [0] * ACT_COUNT
    for joke in jokes:
        if 0 <= joke.position < duration:
            per_page[page_for(joke.position) - 1] += 1
            per_act[min(ACT_COUNT - 1, joke.position * ACT_COUNT // duration)] += 1

    distribution = [
        DistributionPoint(position=(page - 1) * UNITS_PER_MINUTE, count=count, page=page)
        for page, count in enumerate(per_page, start=1)
    ]
    placed = sum(per_act)
    acts = [
        ActBreakdown(
            act=act,
            joke_count=count,
            percentage=round1(count / placed * 100) if placed else 0.0,
        )
        for act, count in enumerate(per_act, start=1)
    ]
    return LaughDistribution(distribution=distribution, act_breakdown=acts)


@timed_stage("gap_diagnosis", "computed")
def diagnose_gaps(
    jokes: Sequence[Joke], timeline: Sequence[TimelinePoint] = (),
) -> GapDiagnosis:
    """Find stretches of more than ``GAP_THRESHOLD`` units without a joke.

    The script's start and end count as boundaries, so a cold open or a
    flat ending shows up as a gap too.
    """
    duration = len(timeline) or DEFAULT_DURATION
    marks = [0] + sorted(j.position for j in jokes if 0 <= j.position < duration) + [duration]

    gaps: list[ComedyGap] = []
    for start, end in zip(marks, marks[1:]):
        length = end - start
        if length <= GAP_THRESHOLD:
            continue
        gaps.append(ComedyGap(
            id=f"gap_{len(gaps) + 1}",
            start=start,
            end=end,
            duration=length,
            severity=gap_severity(length),
        ))

    longest = max(gaps, key=lambda g: g.duration, default=None)
    cliff = None
    if longest is not None and longest.severity in CLIFF_SEVERITIES:
        cliff = RetentionCliff(
            position=longest.start,
            duration=longest.duration,
            impact_score=round1(min(10.0, longest.duration / 5)),
            description=(
                f"Audience attention drops after {format_time(longest.start)}: "
                f"{format_duration(longest.duration)} without a joke"
            ),
        )

    log.info("Gap diagnosis: %d gaps, longest=%d, cliff=%s",
             len(gaps), longest.duration if longest else 0, cliff is not None)

    return GapDiagnosis(
        gaps=gaps,
        retention_cliff=cliff,
        total_gaps=len(gaps),
        longest_gap=longest.duration if longest else 0,
        average_gap_length=round1(sum(g.duration for g in gaps) / len(gaps)) if gaps else 0.0,
    )


def gap_severity(length: int) -> str:
    for minimum, severity in GAP_SEVERITIES:
        if length > minimum:
            return severity
    return "low"
