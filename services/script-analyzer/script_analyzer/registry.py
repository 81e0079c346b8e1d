"""Stage registry.

Catalog of stage definitions keyed by numeric id.  A registry is built
once at startup and then only read, so it is passed explicitly to
whatever drives a run rather than living in a module global.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from .errors import ConfigurationError
from .models import TIERS

log = logging.getLogger(__name__)


class Stage(Protocol):
    """Anything that can execute one stage.

    ``run`` must not mutate *inputs* and should raise an exception with a
    readable message on failure.
    """

    async def run(self, inputs: Mapping[str, Any]) -> Any: ...


class FunctionStage:
    """Adapts a plain ``async def fn(inputs)`` to the ``Stage`` protocol."""

    def __init__(self, fn: Callable[[Mapping[str, Any]], Awaitable[Any]]):
        self.fn = fn

    async def run(self, inputs: Mapping[str, Any]) -> Any:
        return await self.fn(inputs)


@dataclass(frozen=True)
class StageDefinition:
    id: int
    name: str
    title: str
    executor: Stage
    output_key: str
    required_inputs: frozenset[str] = frozenset()
    description: str = ""
    tier: Optional[str] = None  # None = every tier
    estimated_duration: int = 0  # seconds, informational only

    def __post_init__(self):
        if self.id < 1:
            raise ConfigurationError(f"Stage id must be >= 1, got {self.id}")
        if self.tier is not None and self.tier not in TIERS:
            raise ConfigurationError(f"Stage {self.id} has unknown tier {self.tier!r}")
        object.__setattr__(self, "required_inputs", frozenset(self.required_inputs))

    def to_dict(self) -> dict:
        """Metadata view (the executor is not serialisable)."""
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "requiredInputs": sorted(self.required_inputs),
            "outputKey": self.output_key,
            "tier": self.tier,
            "estimatedDuration": self.estimated_duration,
        }


class StageRegistry:
    def __init__(self):
        self._stages: dict[int, StageDefinition] = {}
        self._lock = threading.Lock()

    def register(self, definition: StageDefinition) -> None:
        """Add *definition*; a second definition with the same id is fatal."""
        with self._lock:
            if definition.id in self._stages:
                raise ConfigurationError(f"Stage {definition.id} is already registered")
            self._stages[definition.id] = definition
        log.debug("Registered stage %d (%s)", definition.id, definition.name)

    def get(self, stage_id: int) -> Optional[StageDefinition]:
        return self._stages.get(stage_id)

    def __contains__(self, stage_id: int) -> bool:
        return stage_id in self._stages

    def __len__(self) -> int:
        return len(self._stages)

    def list_all(self) -> list[StageDefinition]:
        return sorted(self._stages.values(), key=lambda s: s.id)

    def list_by_tier(self, tier: str) -> list[StageDefinition]:
        """Stages a caller on *tier* may run.

        free sees free stages, pro sees everything but expert, expert sees
        all.  Stages without a tier are open to everyone.
        """
        if tier not in TIERS:
            raise ValueError(f"Unknown tier: {tier!r}")
        return [s for s in self.list_all() if _tier_allows(tier, s.tier)]

    def is_visible(self, stage_id: int, tier: str) -> bool:
        stage = self.get(stage_id)
        return stage is not None and _tier_allows(tier, stage.tier)


def _tier_allows(caller: str, stage_tier: Optional[str]) -> bool:
    if stage_tier is None or caller == "expert":
        return True
    if caller == "pro":
        return stage_tier != "expert"
    return stage_tier == "free"
