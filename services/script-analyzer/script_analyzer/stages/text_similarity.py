"""Text overlap scoring and callback heuristics.

Pure functions used by callback detection.  Nothing here keeps state.
"""

from __future__ import annotations

import re

# Similarity cut-offs for classifying a reference, checked highest first.
SAME_PHRASE_THRESHOLD = 0.7
THEMATIC_THRESHOLD = 0.5

_NON_WORD = re.compile(r"[^\w\s]")
_CAPITALIZED = re.compile(r"\b[A-Z][a-z]+\b")

_CALLBACK_INDICATORS = (
    re.compile(r"\b(always|never|every time)\b", re.IGNORECASE),
    re.compile(r"\b(remember|forgot|mentioned)\b", re.IGNORECASE),
    re.compile(r"\b(like|just like|similar to)\b", re.IGNORECASE),
    re.compile(r"[\"'].*[\"']"),
)


def normalize(text: str) -> str:
    """Lowercase, drop punctuation, trim.  Used as the setup dedup key."""
    return _NON_WORD.sub("", (text or "").lower()).strip()


def _tokens(text: str) -> set[str]:
    return set(normalize(text).split())


def similarity(a: str, b: str) -> float:
    """Jaccard index of the normalized word sets of *a* and *b*."""
    words_a = _tokens(a)
    words_b = _tokens(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def has_callback_potential(text: str) -> bool:
    """True when *text* reads like something worth calling back to."""
    return any(p.search(text or "") for p in _CALLBACK_INDICATORS)


def has_character_reference(a: str, b: str) -> bool:
    """Both lines mention the same capitalized word (a likely name)."""
    names_a = set(_CAPITALIZED.findall(a or ""))
    return any(name in names_a for name in _CAPITALIZED.findall(b or ""))


def relation_type(setup: str, callback: str, score: float) -> str:
    if score > SAME_PHRASE_THRESHOLD:
        return "same_punchline_phrase"
    if score > THEMATIC_THRESHOLD:
        return "thematic_callback"
    if has_character_reference(setup, callback):
        return "character_callback"
    return "situational_echo"
