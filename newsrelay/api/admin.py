from fastapi import APIRouter, Depends, Request
import structlog

from ..auth import require_auth
from ..queue import JobState
from ..schema import CleanRequest

router = APIRouter(prefix="/admin/queue", tags=["admin"], dependencies=[Depends(require_auth)])
log = structlog.get_logger(__name__)


@router.get("/stats")
async def queue_stats(request: Request):
    return await request.app.state.queue.counts()


@router.post("/pause")
async def pause_queue(request: Request):
    await request.app.state.queue.pause()
    return {"paused": True}


@router.post("/resume")
async def resume_queue(request: Request):
    await request.app.state.queue.resume()
    return {"paused": False}


@router.post("/retry-failed")
async def retry_failed(request: Request):
    ids = await request.app.state.queue.retry_failed()
    return {"retried": len(ids), "jobIds": ids}


@router.post("/clean")
async def clean_queue(req: CleanRequest, request: Request):
    queue = request.app.state.queue
    states = [JobState.COMPLETED, JobState.FAILED] if req.state == "all" else [JobState(req.state)]
    removed = {}
    for state in states:
        removed[state.value] = len(await queue.clean(state, older_than_ms=req.olderThanMs))
    log.info("admin_queue_cleaned", **removed)
    return {"removed": removed}
