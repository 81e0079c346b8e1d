"""Timing for analysis calls made while stages run.

Two context variables cooperate.  ``collect_metrics()`` opens a collection
window for a pipeline run; ``stage_scope(stage_id)`` marks which catalog
stage is executing.  A function marked with ``@timed_stage`` records a
``StageMetrics`` entry tagged with the enclosing stage id, including when
it raises, so a report can tell which stage spent time in which analysis::

    with collect_metrics() as metrics:
        with stage_scope(9):
            detect_callbacks(jokes)
    metrics[0].stage_id  # 9

Outside a collection window the decorator only logs.
"""

from __future__ import annotations

import contextlib
import contextvars
import functools
import inspect
import logging
import time
from typing import Iterator, Optional

from .models import StageMetrics

log = logging.getLogger(__name__)

_current_metrics: contextvars.ContextVar[list[StageMetrics] | None] = (
    contextvars.ContextVar("_current_metrics", default=None)
)
_current_stage: contextvars.ContextVar[Optional[int]] = (
    contextvars.ContextVar("_current_stage", default=None)
)


@contextlib.contextmanager
def collect_metrics() -> Iterator[list[StageMetrics]]:
    """Collect every ``@timed_stage`` call in this context into one list."""
    metrics: list[StageMetrics] = []
    token = _current_metrics.set(metrics)
    try:
        yield metrics
    finally:
        _current_metrics.reset(token)


@contextlib.contextmanager
def stage_scope(stage_id: int) -> Iterator[None]:
    """Attribute timed calls made in this context to *stage_id*."""
    token = _current_stage.set(stage_id)
    try:
        yield
    finally:
        _current_stage.reset(token)


def timed_stage(name: str, kind: str):
    """Decorator that records how long an analysis function took.

    *kind* is ``"computed"`` for in-process analyses and ``"delegated"``
    for calls out to other workers.  Sync and async functions both work.
    """

    def decorator(fn):
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                t0 = time.monotonic_ns()
                try:
                    result = await fn(*args, **kwargs)
                except Exception:
                    _record(name, kind, t0, ok=False)
                    raise
                _record(name, kind, t0)
                return result

        else:

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                t0 = time.monotonic_ns()
                try:
                    result = fn(*args, **kwargs)
                except Exception:
                    _record(name, kind, t0, ok=False)
                    raise
                _record(name, kind, t0)
                return result

        return wrapper

    return decorator


def elapsed_ms(t0: int) -> int:
    return (time.monotonic_ns() - t0) // 1_000_000


def _record(name: str, kind: str, t0: int, ok: bool = True) -> None:
    duration_ms = elapsed_ms(t0)
    stage_id = _current_stage.get()
    log.debug("%s (stage %s, %s): %d ms%s",
              name, stage_id, kind, duration_ms, "" if ok else " [failed]")
    metrics = _current_metrics.get()
    if metrics is not None:
        metrics.append(StageMetrics(name, kind, duration_ms, stage_id=stage_id, ok=ok))
