import json
import logging
import os
from typing import Any, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .catalog import build_default_registry
from .errors import DataAbsentError, PipelineError, StageNotReadyError
from .formatting import now_iso
from .models import TIERS, StageResult, coerce_jokes, coerce_timeline, to_jsonable
from .pipeline import run_pipeline
from .stages.callbacks import detect_callbacks
from .stages.engagement import build_curve_preview, simulate_engagement
from .storage import FileStageStore, InMemoryStageStore, get_stage_output, get_stage_status

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(title="Script Analyzer", description="Runs comedy-script analysis stages and serves their outputs")

STAGE_STORE_DIR = os.getenv("STAGE_STORE_DIR", "")
# Delegated stage id -> base URL, JSON.  Example: '{"6":"http://punchups:8020"}'
STAGE_ENDPOINTS: dict[int, str] = {
    int(k): v for k, v in json.loads(os.getenv("STAGE_ENDPOINTS", "{}")).items()
}
STAGE_TIMEOUT = float(os.getenv("STAGE_TIMEOUT", "300"))

CALLBACK_STAGE_ID = 9
ENGAGEMENT_STAGE_ID = 10

store = FileStageStore(STAGE_STORE_DIR) if STAGE_STORE_DIR else InMemoryStageStore()
registry = build_default_registry(store, STAGE_ENDPOINTS, timeout=STAGE_TIMEOUT)


# Upstream parsers emit either string or numeric joke ids.
JokeId = Union[str, int]


class JokeIn(BaseModel):
    id: JokeId
    text: str
    lineNumber: int
    position: int
    complexity: str = "Standard"
    page: Optional[int] = None
    type: Optional[str] = None


class TimelinePointIn(BaseModel):
    position: int
    time: str = ""
    page: int = 1
    hasJoke: bool = False
    jokeId: Optional[JokeId] = None


class RunRequest(BaseModel):
    stageIds: list[int]
    tier: str = "free"
    scriptText: Optional[str] = None
    jokes: Optional[list[JokeIn]] = None
    timeline: Optional[list[TimelinePointIn]] = None
    inputs: dict[str, Any] = {}  # extra run inputs, e.g. scriptId / sessionId


class CallbackRequest(BaseModel):
    jobId: str
    scriptText: str = ""
    jokes: list[JokeIn]
    timeline: list[TimelinePointIn] = []


class EngagementRequest(BaseModel):
    jobId: str
    jokes: list[JokeIn]
    timeline: list[TimelinePointIn]
    gaps: Optional[Any] = None


class PreviewRequest(BaseModel):
    jokes: list[JokeIn]
    timeline: list[TimelinePointIn] = []


def _jokes(items: list[JokeIn]):
    return coerce_jokes(j.model_dump() for j in items)


def _timeline(items: list[TimelinePointIn]):
    return coerce_timeline(p.model_dump() for p in items)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = await request.body()
    log.error("422 validation error on %s %s", request.method, request.url.path)
    log.error("Request body: %s", body.decode(errors="replace")[:2000])
    log.error("Validation errors: %s", exc.errors())
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "body_preview": body.decode(errors="replace")[:500]})


def _check_tier(tier: str) -> None:
    if tier not in TIERS:
        raise HTTPException(status_code=400, detail=f"Invalid tier: {tier}")


@app.get("/stages")
async def list_stages(tier: str = "expert"):
    """List stage metadata visible to *tier*."""
    _check_tier(tier)
    return [s.to_dict() for s in registry.list_by_tier(tier)]


@app.post("/jobs/{job_id}/run")
async def run_stages(job_id: str, request: RunRequest):
    """Run the requested stages in order for one job."""
    _check_tier(request.tier)
    for stage_id in request.stageIds:
        if registry.get(stage_id) is None:
            raise HTTPException(status_code=404, detail=f"Stage {stage_id} not found")
        if not registry.is_visible(stage_id, request.tier):
            raise HTTPException(
                status_code=403,
                detail=f"Stage {stage_id} is not available on the {request.tier} tier",
            )

    inputs: dict[str, Any] = {**request.inputs, "jobId": job_id}
    if request.scriptText is not None:
        inputs["scriptText"] = request.scriptText
    if request.jokes is not None:
        inputs["jokes"] = _jokes(request.jokes)
    if request.timeline is not None:
        inputs["timeline"] = _timeline(request.timeline)

    log.info("POST /jobs/%s/run — stages=%s tier=%s", job_id, request.stageIds, request.tier)

    progress: list[StageResult] = []
    try:
        result = await run_pipeline(
            registry, request.stageIds, inputs,
            on_progress=lambda _sid, r: progress.append(r),
        )
    except PipelineError as e:
        status = 409 if isinstance(e, StageNotReadyError) else 422
        log.warning("Run for job %s stopped: %s", job_id, e)
        raise HTTPException(
            status_code=status,
            detail={
                "stageId": e.stage_id,
                "error": e.error,
                "results": [r.to_dict() for r in progress],
            },
        )

    return {
        "jobId": job_id,
        "outputs": to_jsonable(result.outputs),
        "results": [r.to_dict() for r in result.results],
        "report": result.report,
    }


@app.get("/jobs/{job_id}/stages/{stage_id}")
async def read_stage_output(job_id: str, stage_id: int):
    """Stored output of one stage (polled by the frontend)."""
    stage = registry.get(stage_id)
    if stage is None:
        raise HTTPException(status_code=404, detail=f"Stage {stage_id} not found")
    try:
        return await get_stage_output(store, job_id, stage_id, stage.title)
    except DataAbsentError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/jobs/{job_id}/stages/{stage_id}/status")
async def read_stage_status(job_id: str, stage_id: int):
    if registry.get(stage_id) is None:
        raise HTTPException(status_code=404, detail=f"Stage {stage_id} not found")
    try:
        return await get_stage_status(store, job_id, stage_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/analyze/callbacks")
async def analyze_callbacks(request: CallbackRequest):
    log.info("POST /analyze/callbacks — job=%s jokes=%d", request.jobId, len(request.jokes))
    analysis = detect_callbacks(
        _jokes(request.jokes), request.scriptText, _timeline(request.timeline),
    )
    await _persist(request.jobId, CALLBACK_STAGE_ID, analysis)
    return {"success": True, "data": analysis.to_dict()}


@app.post("/analyze/engagement")
async def analyze_engagement(request: EngagementRequest):
    log.info("POST /analyze/engagement — job=%s jokes=%d timeline=%d",
             request.jobId, len(request.jokes), len(request.timeline))
    analysis = simulate_engagement(
        _jokes(request.jokes), _timeline(request.timeline), request.gaps,
    )
    await _persist(request.jobId, ENGAGEMENT_STAGE_ID, analysis)
    return {"success": True, "data": analysis.to_dict()}


@app.post("/engagement/preview")
async def engagement_preview(request: PreviewRequest):
    curve = build_curve_preview(_jokes(request.jokes), _timeline(request.timeline))
    return {"curve": [p.to_dict() for p in curve]}


async def _persist(job_id: str, stage_id: int, value: Any) -> None:
    try:
        await store.write_stage_output(job_id, stage_id, value, now_iso())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/health")
async def health():
    return {"status": "ok", "stages": len(registry), "remote_stages": sorted(STAGE_ENDPOINTS)}
