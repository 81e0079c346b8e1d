"""Executors for stages computed somewhere else.

``RemoteStage`` POSTs the run state to an HTTP endpoint; ``StoredOutputStage``
returns what an earlier (external) computation stored for the job.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from ..errors import StageExecutionError
from ..models import to_jsonable
from ..storage import StageStore, get_stage_output
from ..timing import timed_stage

log = logging.getLogger(__name__)


class RemoteStage:
    """Runs a stage by POSTing its inputs to ``<base_url>/run``.

    The endpoint answers either ``{"data": ...}`` or the bare output.
    *transport* is for tests (``httpx.MockTransport``).
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def run(self, inputs: Mapping[str, Any]) -> Any:
        return await _call_remote(self, inputs)


@timed_stage("remote_stage", "delegated")
async def _call_remote(stage: RemoteStage, inputs: Mapping[str, Any]) -> Any:
    url = f"{stage.base_url}/run"
    payload = {"stage": stage.name, "inputs": to_jsonable(dict(inputs))}
    log.info("Calling remote stage %s at %s", stage.name, url)

    async with httpx.AsyncClient(timeout=stage.timeout, transport=stage.transport) as client:
        try:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            log.error("Remote stage %s failed: %s", stage.name, e)
            raise StageExecutionError(f"Remote stage {stage.name} failed: {e}") from e

    try:
        body = resp.json()
    except ValueError as e:
        raise StageExecutionError(
            f"Remote stage {stage.name} returned invalid JSON: {resp.text[:200]}"
        ) from e

    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class StoredOutputStage:
    """Returns the job's stored output for *stage_id*.

    Raises ``DataAbsentError`` until the output exists, so callers can poll.
    """

    def __init__(self, store: StageStore, stage_id: int, label: str):
        self.store = store
        self.stage_id = stage_id
        self.label = label

    async def run(self, inputs: Mapping[str, Any]) -> Any:
        job_id = inputs.get("jobId")
        if not job_id:
            raise StageExecutionError(f"{self.label} needs a jobId to load stored output")
        return await get_stage_output(self.store, job_id, self.stage_id, self.label)
