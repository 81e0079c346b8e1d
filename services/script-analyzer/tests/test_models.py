"""Tests for wire-dict parsing and value checks on the data models."""

import pytest

from script_analyzer.models import (
    CallbackReference,
    Joke,
    MissedOpportunity,
    TimelinePoint,
    coerce_jokes,
    coerce_timeline,
)


def test_joke_from_dict_with_null_line_number():
    joke = Joke.from_dict({"id": 7, "text": "Hi", "lineNumber": None, "position": 3})
    assert joke.id == "7"
    assert joke.line_number == 0
    assert joke.position == 3


def test_timeline_point_numeric_joke_id_becomes_text():
    point = TimelinePoint.from_dict({"position": 4, "hasJoke": True, "jokeId": 12})
    assert point.joke_id == "12"
    assert TimelinePoint.from_dict({"position": 5}).joke_id is None


def test_coerce_accepts_objects_and_dicts():
    joke = Joke(id="a", text="t", line_number=1, position=0)
    assert coerce_jokes([joke, {"id": "b", "text": "u", "position": 2}])[0] is joke
    assert [p.position for p in coerce_timeline([{"position": 1}])] == [1]
    assert coerce_jokes(None) == []


def test_callback_reference_rejects_unknown_relation():
    ref = CallbackReference(line_number=1, page=1, relation="thematic_callback", similarity=0.6)
    assert ref.to_dict()["relation"] == "thematic_callback"
    with pytest.raises(ValueError, match="Unknown callback relation"):
        CallbackReference(line_number=1, page=1, relation="pun", similarity=0.6)


def test_missed_opportunity_rejects_unknown_impact():
    with pytest.raises(ValueError, match="Unknown impact level"):
        MissedOpportunity(setup="s", line_number=1, page=1, suggestion="x",
                          potential_impact="huge")
