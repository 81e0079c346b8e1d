"""Shared number and time formatting for stage outputs.

Timeline positions are abstract units: ten units make one script minute
(and one page), each unit is six seconds.
"""

from __future__ import annotations

import datetime as dt
import math

UNITS_PER_MINUTE = 10
SECONDS_PER_UNIT = 6


def round1(value: float) -> float:
    """Round half-up to one decimal place.

    Wire values must match the half-up rounding clients already persist,
    so ``round()``'s banker's rounding is not used here.
    """
    return math.floor(value * 10 + 0.5) / 10


def format_time(position: int) -> str:
    """Render a timeline position as ``m:ss``."""
    minutes = position // UNITS_PER_MINUTE
    seconds = (position % UNITS_PER_MINUTE) * SECONDS_PER_UNIT
    return f"{minutes}:{seconds:02d}"


def format_duration(units: int) -> str:
    """Human-readable length of a span of timeline units."""
    minutes = units // UNITS_PER_MINUTE
    seconds = round((units % UNITS_PER_MINUTE) * SECONDS_PER_UNIT)
    if minutes == 0:
        return f"{seconds} seconds"
    if seconds == 0:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{minutes}m {seconds}s"


def page_for(position: int) -> int:
    return position // UNITS_PER_MINUTE + 1


def now_iso() -> str:
    """UTC timestamp in the ``2024-01-01T00:00:00.000Z`` form."""
    now = dt.datetime.now(dt.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
