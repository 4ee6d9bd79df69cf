"""
newsrelay command line

    newsrelay worker                 standalone consumer, emits through the Redis stream
    newsrelay enqueue --source all   trigger an ingest run
    newsrelay stats                  per-state job counts
    newsrelay clean completed|failed|all [--older-than-ms N]
    newsrelay pause | resume
    newsrelay retry                  re-queue every failed job
"""
import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

import httpx
import structlog

from .config import settings
from .db import create_schema, make_engine, make_session_factory
from .hub import RedisStreamEmitter
from .observability import log_startup_info, setup_logging
from .queue import JobQueue, JobState
from .scheduler import enqueue_ingest
from .store import ArticleStore
from .worker import IngestionWorker

log = structlog.get_logger(__name__)


async def run_worker():
    log_startup_info(settings, role="worker")
    engine = make_engine(settings.DATABASE_URL)
    await create_schema(engine)
    queue = JobQueue.from_settings(settings)
    emitter = RedisStreamEmitter(queue.redis, settings.EVENT_STREAM, settings.REDIS_STREAM_MAXLEN)
    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.SOURCE_TIMEOUT_SECONDS))
    worker = IngestionWorker.from_settings(
        settings, queue, ArticleStore(make_session_factory(engine)), emitter, client=http
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await worker.run(stop)
    finally:
        await worker.enricher.close()
        await http.aclose()
        await queue.close()
        await engine.dispose()


async def run_admin(args) -> dict:
    queue = JobQueue.from_settings(settings)
    try:
        if args.command == "enqueue":
            job = await enqueue_ingest(queue, settings, source=args.source, job_id=args.job_id)
            return {"jobId": job.id, "state": job.state.value}
        if args.command == "stats":
            return await queue.counts()
        if args.command == "clean":
            states = [JobState.COMPLETED, JobState.FAILED] if args.state == "all" else [JobState(args.state)]
            return {s.value: len(await queue.clean(s, older_than_ms=args.older_than_ms)) for s in states}
        if args.command == "pause":
            await queue.pause()
            return {"paused": True}
        if args.command == "resume":
            await queue.resume()
            return {"paused": False}
        if args.command == "retry":
            ids = await queue.retry_failed()
            return {"retried": len(ids), "jobIds": ids}
        raise ValueError(f"unknown command: {args.command}")
    finally:
        await queue.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="newsrelay", description="News ingestion queue tools")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("worker", help="Run a standalone ingestion worker")

    p = sub.add_parser("enqueue", help="Enqueue a fetch-and-process job")
    p.add_argument("--source", default="all", help="'all' or comma-separated provider names")
    p.add_argument("--job-id", default=None, help="Idempotency key (default: derived from source and time)")

    sub.add_parser("stats", help="Show job counts per state")

    p = sub.add_parser("clean", help="Delete finished jobs")
    p.add_argument("state", choices=["completed", "failed", "all"])
    p.add_argument("--older-than-ms", type=int, default=0)

    sub.add_parser("pause", help="Stop consumers from claiming new jobs")
    sub.add_parser("resume", help="Resume a paused queue")
    sub.add_parser("retry", help="Re-queue every failed job")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        settings.LOG_LEVEL, settings.LOG_FORMAT, service=f"{settings.SERVICE_NAME}-{args.command}"
    )
    if args.command == "worker":
        asyncio.run(run_worker())
        return 0
    result = asyncio.run(run_admin(args))
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
