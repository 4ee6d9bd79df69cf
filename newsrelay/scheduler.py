"""Periodic ingest trigger and the shared enqueue helper used by the API and CLI."""
import asyncio
import time
from typing import Optional

import structlog
from redis.exceptions import RedisError

from .queue import BackoffPolicy, Job, JobOptions, JobQueue

log = structlog.get_logger(__name__)

JOB_NAME = "fetchAndProcessNews"


def ingest_job_id(source: str, at: Optional[float] = None) -> str:
    """`news-ingest-<selector>-<epoch seconds>`; one job per selector per second"""
    at = time.time() if at is None else at
    selector = (source or "all").strip().lower().replace(",", "+").replace(" ", "")
    return f"news-ingest-{selector}-{int(at)}"


async def enqueue_ingest(
    queue: JobQueue,
    settings,
    source: str = "all",
    job_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
    backoff_ms: Optional[int] = None,
) -> Job:
    opts = JobOptions.from_settings(
        settings,
        job_id=job_id or ingest_job_id(source),
        max_attempts=max_attempts,
        backoff=BackoffPolicy("exponential", backoff_ms) if backoff_ms is not None else None,
    )
    payload = {"type": JOB_NAME, "source": source}
    return await queue.enqueue(JOB_NAME, payload, opts)


class IngestScheduler:
    """Enqueues an `all`-sources ingest every `interval` seconds; first run is immediate."""

    def __init__(self, queue: JobQueue, settings, interval: int):
        self.queue = queue
        self.settings = settings
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        if self.interval <= 0:
            log.info("ingest_scheduler_disabled")
            return
        self._task = asyncio.create_task(self._run())
        log.info("ingest_scheduler_started", interval_seconds=self.interval)

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def tick(self) -> Job:
        job = await enqueue_ingest(self.queue, self.settings, "all")
        log.info("scheduled_ingest_enqueued", job_id=job.id)
        return job

    async def _run(self):
        while True:
            try:
                await self.tick()
            except RedisError as e:
                log.error("scheduled_ingest_failed", error=str(e))
            await asyncio.sleep(self.interval)
