"""Stage 9 — Callback Architecture Mapping.

Groups jokes into setup -> reference clusters by word overlap and flags
setups that look callback-worthy but never pay off.

A setup is only compared against jokes at a strictly later ``position``,
so the input must be sorted by position.  Each normalized setup text
forms at most one cluster.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..formatting import page_for, round1
from ..models import (
    CallbackAnalysis,
    CallbackCluster,
    CallbackMetrics,
    CallbackReference,
    CallbackSetup,
    Joke,
    MissedOpportunity,
    TimelinePoint,
)
from ..timing import timed_stage
from .text_similarity import has_callback_potential, normalize, relation_type, similarity

log = logging.getLogger(__name__)

MIN_SETUP_LENGTH = 10
CALLBACK_SIMILARITY_THRESHOLD = 0.3
MAX_MISSED_OPPORTUNITIES = 5

HIGH_IMPACT_LENGTH = 50
MEDIUM_IMPACT_LENGTH = 30

MISSED_CALLBACK_SUGGESTION = (
    "Consider referencing this setup in a later scene for comedic payoff. "
    "The setup has strong callback potential."
)


@timed_stage("callback_mapping", "computed")
def detect_callbacks(
    jokes: Sequence[Joke],
    script_text: str = "",
    timeline: Sequence[TimelinePoint] = (),
) -> CallbackAnalysis:
    """Find callback clusters and missed callback opportunities in *jokes*.

    *script_text* and *timeline* are accepted so every stage shares the
    same inputs; clustering works purely from the joke texts.
    """
    callbacks: list[CallbackCluster] = []
    missed: list[MissedOpportunity] = []
    claimed: set[str] = set()

    setups = [j for j in jokes if j.text and len(j.text) > MIN_SETUP_LENGTH]

    for setup in setups:
        key = normalize(setup.text)
        if key in claimed:
            continue

        references = _find_references(setup, jokes)

        if references:
            callbacks.append(CallbackCluster(
                id=f"callback_{len(callbacks) + 1}",
                setup=CallbackSetup(
                    line=setup.text,
                    line_number=setup.line_number,
                    page=_page(setup),
                    joke_id=setup.id,
                ),
                references=references,
            ))
            claimed.add(key)
        elif has_callback_potential(setup.text):
            missed.append(MissedOpportunity(
                setup=setup.text,
                line_number=setup.line_number,
                page=_page(setup),
                suggestion=MISSED_CALLBACK_SUGGESTION,
                potential_impact=assess_impact(setup.text),
            ))

    total_refs = sum(len(c.references) for c in callbacks)
    frequency = total_refs / len(jokes) * 100 if jokes else 0.0

    metrics = CallbackMetrics(
        callback_count=len(callbacks),
        callback_frequency_percent=round1(frequency),
        total_jokes=len(jokes),
        average_callbacks_per_setup=round1(total_refs / len(callbacks)) if callbacks else 0.0,
    )

    log.info("Callback mapping: %d clusters, %d references, %d missed (of %d jokes)",
             len(callbacks), total_refs, len(missed), len(jokes))

    return CallbackAnalysis(
        callbacks=callbacks,
        metrics=metrics,
        missed_opportunities=missed[:MAX_MISSED_OPPORTUNITIES],
    )


def assess_impact(text: str) -> str:
    if len(text) > HIGH_IMPACT_LENGTH and has_callback_potential(text):
        return "high"
    if len(text) > MEDIUM_IMPACT_LENGTH:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _find_references(setup: Joke, jokes: Sequence[Joke]) -> list[CallbackReference]:
    references: list[CallbackReference] = []
    for later in jokes:
        if later.position <= setup.position:
            continue
        score = similarity(setup.text, later.text)
        if score > CALLBACK_SIMILARITY_THRESHOLD:
            references.append(CallbackReference(
                line_number=later.line_number,
                page=_page(later),
                relation=relation_type(setup.text, later.text, score),
                similarity=score,
            ))
    return references


def _page(joke: Joke) -> int:
    return joke.page if joke.page else page_for(joke.position)
