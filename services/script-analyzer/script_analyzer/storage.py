"""Per-job stage output storage.

Stages 9 and 10 persist their output here with a completion timestamp;
delegated stages read previously computed outputs back.  Values are
stored in their wire shape (plain JSON), never as dataclasses.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Optional, Protocol

import aiofiles

from .errors import DataAbsentError
from .models import to_jsonable

log = logging.getLogger(__name__)

_SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9_\-]+$")


class StageStore(Protocol):
    async def read_stage_output(self, job_id: str, stage_id: int) -> Optional[Any]: ...

    async def read_completed_at(self, job_id: str, stage_id: int) -> Optional[str]: ...

    async def write_stage_output(
        self, job_id: str, stage_id: int, value: Any, completed_at: str,
    ) -> None: ...


class InMemoryStageStore:
    """Process-local store; each record is ``(output, completed_at)``."""

    def __init__(self):
        self._records: dict[tuple[str, int], tuple[Any, str]] = {}

    async def read_stage_output(self, job_id: str, stage_id: int) -> Optional[Any]:
        record = self._records.get((job_id, stage_id))
        return record[0] if record else None

    async def read_completed_at(self, job_id: str, stage_id: int) -> Optional[str]:
        record = self._records.get((job_id, stage_id))
        return record[1] if record else None

    async def write_stage_output(
        self, job_id: str, stage_id: int, value: Any, completed_at: str,
    ) -> None:
        self._records[(job_id, stage_id)] = (to_jsonable(value), completed_at)


class FileStageStore:
    """One JSON file per job and stage: ``<root>/<job_id>/stage_<n>.json``."""

    def __init__(self, root: str):
        self.root = root

    def _path(self, job_id: str, stage_id: int) -> str:
        if not _SAFE_JOB_ID.match(job_id or ""):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return os.path.join(self.root, job_id, f"stage_{int(stage_id)}.json")

    async def _read(self, job_id: str, stage_id: int) -> Optional[dict]:
        path = self._path(job_id, stage_id)
        if not os.path.exists(path):
            return None
        async with aiofiles.open(path, "r") as f:
            content = await f.read()
        return json.loads(content)

    async def read_stage_output(self, job_id: str, stage_id: int) -> Optional[Any]:
        record = await self._read(job_id, stage_id)
        return record["output"] if record else None

    async def read_completed_at(self, job_id: str, stage_id: int) -> Optional[str]:
        record = await self._read(job_id, stage_id)
        return record["completed_at"] if record else None

    async def write_stage_output(
        self, job_id: str, stage_id: int, value: Any, completed_at: str,
    ) -> None:
        path = self._path(job_id, stage_id)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        record = {"output": to_jsonable(value), "completed_at": completed_at}
        async with aiofiles.open(path, "w") as f:
            await f.write(json.dumps(record))
        log.info("Stage output written: job_id=%s stage=%d", job_id, stage_id)


async def get_stage_output(
    store: StageStore, job_id: str, stage_id: int, label: str = "",
) -> Any:
    """Stored output for *stage_id*, or ``DataAbsentError`` if not computed yet."""
    output = await store.read_stage_output(job_id, stage_id)
    if output is None:
        raise DataAbsentError(f"{label or f'Stage {stage_id} output'} not yet available")
    return output


async def get_stage_status(store: StageStore, job_id: str, stage_id: int) -> dict:
    completed_at = await store.read_completed_at(job_id, stage_id)
    status: dict[str, Any] = {"completed": completed_at is not None}
    if completed_at is not None:
        status["completedAt"] = completed_at
    return status
