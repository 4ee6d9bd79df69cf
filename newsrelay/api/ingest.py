from fastapi import APIRouter, Depends, HTTPException, Request
from redis.exceptions import RedisError
import structlog

from ..adapters import unknown_sources
from ..auth import require_auth
from ..errors import JobNotFoundError
from ..scheduler import enqueue_ingest
from ..schema import IngestRequest, IngestResponse

router = APIRouter(tags=["ingest"])
log = structlog.get_logger(__name__)


@router.post("/ingest", response_model=IngestResponse, dependencies=[Depends(require_auth)])
async def trigger_ingest(req: IngestRequest, request: Request):
    """
    Enqueue a fetch-and-process run.

    - `source`: `all` or a comma list of provider names
    - `jobId`: optional idempotency key; repeating it returns the existing job
    - `maxAttempts` / `backoff`: per-job retry overrides
    """
    source = req.source.strip() or "all"
    bad = unknown_sources(source)
    if bad or source.replace(",", "").strip() == "":
        raise HTTPException(status_code=400, detail=f"unknown source: {', '.join(bad) or source}")

    state = request.app.state
    try:
        job = await enqueue_ingest(
            state.queue,
            state.settings,
            source=source,
            job_id=req.jobId,
            max_attempts=req.maxAttempts,
            backoff_ms=req.backoff.delayMs if req.backoff else None,
        )
    except RedisError as e:
        log.error("ingest_enqueue_failed", source=source, error=str(e))
        raise HTTPException(status_code=503, detail="job queue unavailable")
    return IngestResponse(status=job.state.value, jobId=job.id, source=source)


@router.get("/ingest/{job_id}", dependencies=[Depends(require_auth)])
async def get_ingest_job(job_id: str, request: Request):
    try:
        await request.app.state.queue.get_state(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    job = await request.app.state.queue.get_job(job_id)
    return job.view()
