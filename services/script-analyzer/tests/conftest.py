"""Pytest configuration and fixtures."""

import pytest

from script_analyzer.formatting import format_time, page_for
from script_analyzer.models import Joke, TimelinePoint
from script_analyzer.storage import InMemoryStageStore


def make_joke(position, text="A perfectly ordinary joke", complexity="Standard",
              line_number=None, joke_id=None, page=None):
    return Joke(
        id=joke_id or f"joke_{position}",
        text=text,
        line_number=line_number if line_number is not None else position + 1,
        position=position,
        complexity=complexity,
        page=page,
    )


def make_timeline(length, joke_positions=()):
    marked = set(joke_positions)
    return [
        TimelinePoint(
            position=i,
            time=format_time(i),
            page=page_for(i),
            has_joke=i in marked,
        )
        for i in range(length)
    ]


@pytest.fixture
def store():
    return InMemoryStageStore()
