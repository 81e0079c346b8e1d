"""Exception types raised by the stage engine and its collaborators."""

from __future__ import annotations

from typing import Iterable, Optional

from .models import StageResult


class AnalyzerError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AnalyzerError):
    """Stage catalog is inconsistent (e.g. a stage id registered twice)."""


class StageValidationError(AnalyzerError):
    """A stage was asked to run without all of its required inputs."""

    def __init__(self, stage_id: int, missing: Iterable[str]):
        self.stage_id = stage_id
        self.missing = sorted(missing)
        super().__init__(f"Missing required inputs: {', '.join(self.missing)}")


class StageExecutionError(AnalyzerError):
    """A stage executor failed while running."""


class DataAbsentError(AnalyzerError):
    """An upstream output has not been computed yet.  Callers may poll."""


class PipelineError(AnalyzerError):
    """A sequence stopped at its first failing stage."""

    def __init__(self, stage_id: int, result: Optional[StageResult] = None):
        self.stage_id = stage_id
        self.result = result
        self.error = result.error if result else None
        super().__init__(f"Stage {stage_id} failed: {self.error}")


class StageNotReadyError(PipelineError):
    """The failing stage reported its data as not yet available."""
