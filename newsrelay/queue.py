"""
Redis-backed job queue for ingest jobs.

Layout under ``<prefix>:<queue>:``

    job:<id>    hash, one per job (state, attempts, payload, ...)
    wait        list, FIFO of waiting job ids (LPUSH in, RPOPLPUSH out)
    active      list, claimed job ids
    lock:<id>   string with TTL while a consumer holds the job
    delayed     zset, score = ready time (ms) for jobs waiting out a backoff
    completed   zset, score = finish time (ms)
    failed      zset, score = finish time (ms)
    paused      flag

A claim moves the id from wait to active and takes its lock in one WATCH/MULTI
transaction, so a job is held by at most one consumer and never sits in active
unlocked. Enqueue checks for an existing id the same way. A job
whose lock expires while still listed as active is treated as stalled and fails
through the normal retry path.
"""
import asyncio
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import WatchError

from .errors import JobNotFoundError

log = structlog.get_logger(__name__)

CLAIM_POLL_SECONDS = 0.2


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


@dataclass
class BackoffPolicy:
    type: str = "exponential"  # or "fixed"
    delay_ms: int = 2000

    def delay_for(self, attempts_made: int) -> int:
        """Delay before the next attempt after `attempts_made` failures (1-based)"""
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2 ** max(0, attempts_made - 1)


@dataclass
class JobOptions:
    job_id: Optional[str] = None
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    keep_completed: int = 10  # -1 keeps everything
    keep_failed: int = 5

    @classmethod
    def from_settings(cls, settings, **overrides) -> "JobOptions":
        opts = cls(
            max_attempts=settings.JOB_MAX_ATTEMPTS,
            backoff=BackoffPolicy("exponential", settings.JOB_BACKOFF_MS),
            keep_completed=settings.JOB_KEEP_COMPLETED,
            keep_failed=settings.JOB_KEEP_FAILED,
        )
        for k, v in overrides.items():
            if v is not None:
                setattr(opts, k, v)
        return opts


@dataclass
class Job:
    id: str
    name: str
    payload: Dict[str, Any]
    state: JobState
    attempts_made: int
    max_attempts: int
    backoff: BackoffPolicy
    enqueued_at: int
    processed_at: Optional[int] = None
    finished_at: Optional[int] = None
    failed_reason: Optional[str] = None
    next_delay_ms: Optional[int] = None
    result: Optional[Dict[str, Any]] = None
    keep_completed: int = 10
    keep_failed: int = 5

    def to_hash(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "payload": json.dumps(self.payload),
            "state": self.state.value,
            "attempts_made": str(self.attempts_made),
            "max_attempts": str(self.max_attempts),
            "backoff": json.dumps(asdict(self.backoff)),
            "enqueued_at": str(self.enqueued_at),
            "processed_at": _enc(self.processed_at),
            "finished_at": _enc(self.finished_at),
            "failed_reason": self.failed_reason or "",
            "next_delay_ms": _enc(self.next_delay_ms),
            "result": json.dumps(self.result) if self.result is not None else "",
            "keep_completed": str(self.keep_completed),
            "keep_failed": str(self.keep_failed),
        }

    @classmethod
    def from_hash(cls, h: Dict[str, str]) -> "Job":
        return cls(
            id=h["id"],
            name=h.get("name", ""),
            payload=json.loads(h.get("payload") or "{}"),
            state=JobState(h.get("state") or JobState.WAITING.value),
            attempts_made=int(h.get("attempts_made") or 0),
            max_attempts=int(h.get("max_attempts") or 1),
            backoff=BackoffPolicy(**json.loads(h.get("backoff") or "{}")),
            enqueued_at=int(h.get("enqueued_at") or 0),
            processed_at=_dec(h.get("processed_at")),
            finished_at=_dec(h.get("finished_at")),
            failed_reason=h.get("failed_reason") or None,
            next_delay_ms=_dec(h.get("next_delay_ms")),
            result=json.loads(h["result"]) if h.get("result") else None,
            keep_completed=int(h.get("keep_completed") or 10),
            keep_failed=int(h.get("keep_failed") or 5),
        )

    def view(self) -> Dict[str, Any]:
        return {
            "jobId": self.id,
            "name": self.name,
            "data": self.payload,
            "state": self.state.value,
            "attemptsMade": self.attempts_made,
            "maxAttempts": self.max_attempts,
            "backoff": {"type": self.backoff.type, "delayMs": self.backoff.delay_ms},
            "enqueuedAt": self.enqueued_at,
            "processedAt": self.processed_at,
            "finishedAt": self.finished_at,
            "failedReason": self.failed_reason,
            "nextDelayMs": self.next_delay_ms,
            "result": self.result,
        }


def _enc(v: Optional[int]) -> str:
    return "" if v is None else str(v)


def _dec(v: Optional[str]) -> Optional[int]:
    return int(v) if v not in (None, "") else None


def _s(v) -> str:
    return v.decode() if isinstance(v, (bytes, bytearray)) else v


def now_ms() -> int:
    return int(time.time() * 1000)


class JobQueue:
    """Durable FIFO with per-job attempts, backoff and retention."""

    def __init__(
        self,
        redis: Redis,
        name: str = "news-ingest",
        prefix: str = "newsrelay",
        lock_ms: int = 15 * 60 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self.redis = redis
        self.name = name
        self.prefix = prefix
        self.lock_ms = lock_ms
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, redis: Optional[Redis] = None) -> "JobQueue":
        redis = redis or Redis.from_url(settings.REDIS_URL, decode_responses=True)
        # lock outlives the job timeout so only dead consumers look stalled
        lock_ms = int(settings.JOB_TIMEOUT_SECONDS * 1000) + 60_000
        return cls(redis, settings.QUEUE_NAME, settings.QUEUE_PREFIX, lock_ms=lock_ms)

    def _k(self, *parts: str) -> str:
        return ":".join((self.prefix, self.name) + parts)

    def _job_key(self, job_id: str) -> str:
        return self._k("job", job_id)

    def _terminal_key(self, state: JobState) -> str:
        return self._k(state.value)

    # ------------------------------------------------------------------
    # producer side
    # ------------------------------------------------------------------

    async def enqueue(self, name: str, payload: Dict[str, Any], opts: Optional[JobOptions] = None) -> Job:
        """Add a job. A duplicate `job_id` returns the existing job instead of creating another."""
        opts = opts or JobOptions()
        job_id = opts.job_id or uuid.uuid4().hex
        key = self._job_key(job_id)
        job = Job(
            id=job_id,
            name=name,
            payload=payload,
            state=JobState.WAITING,
            attempts_made=0,
            max_attempts=max(1, opts.max_attempts),
            backoff=opts.backoff,
            enqueued_at=self.clock(),
            keep_completed=opts.keep_completed,
            keep_failed=opts.keep_failed,
        )
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    # existence check, hash write and LPUSH commit together or not at all
                    await pipe.watch(key)
                    existing = await self.get_job(job_id)
                    if existing is not None:
                        log.info("job_duplicate_ignored", job_id=job_id, state=existing.state.value)
                        return existing
                    pipe.multi()
                    pipe.hset(key, mapping=job.to_hash())
                    pipe.lpush(self._k("wait"), job_id)
                    await pipe.execute()
                    break
                except WatchError:
                    continue
        log.info("job_enqueued", job_id=job_id, name=name, max_attempts=job.max_attempts)
        return job

    # ------------------------------------------------------------------
    # consumer side
    # ------------------------------------------------------------------

    async def dequeue(self, timeout: float = 0) -> Optional[Job]:
        """Claim the oldest waiting job; polls up to `timeout` seconds (0 = don't wait)."""
        deadline = time.monotonic() + timeout
        while True:
            await self.promote_delayed()
            if await self.is_paused():
                return None
            job_id = await self._claim()
            if job_id is not None:
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(CLAIM_POLL_SECONDS, remaining))
        job = await self.get_job(job_id)
        if job is None:
            # hash was cleaned while the id sat in the wait list
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self._k("active"), 0, job_id)
                pipe.delete(self._k("lock", job_id), self._job_key(job_id))
                await pipe.execute()
            return None
        return job

    async def _claim(self) -> Optional[str]:
        """Move the tail of the wait list to active, taking the lock in the same transaction."""
        wait = self._k("wait")
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(wait)
                    job_id = await pipe.lindex(wait, -1)
                    if job_id is None:
                        return None
                    job_id = _s(job_id)
                    pipe.multi()
                    pipe.rpoplpush(wait, self._k("active"))
                    pipe.set(self._k("lock", job_id), "1", px=self.lock_ms)
                    pipe.hset(
                        self._job_key(job_id),
                        mapping={"state": JobState.ACTIVE.value, "processed_at": str(self.clock())},
                    )
                    await pipe.execute()
                    return job_id
                except WatchError:
                    continue

    async def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> Job:
        now = self.clock()
        job.state = JobState.COMPLETED
        job.finished_at = now
        job.result = result
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._k("active"), 0, job.id)
            pipe.delete(self._k("lock", job.id))
            pipe.hset(self._job_key(job.id), mapping={
                "state": job.state.value,
                "finished_at": str(now),
                "result": json.dumps(result) if result is not None else "",
                "failed_reason": "",
            })
            pipe.zadd(self._terminal_key(JobState.COMPLETED), {job.id: now})
            await pipe.execute()
        await self._trim(JobState.COMPLETED, job.keep_completed)
        return job

    async def fail(self, job: Job, reason: str) -> Job:
        """Record a failed attempt; reschedules with backoff until attempts are exhausted."""
        async with self.redis.pipeline(transaction=True) as pipe:
            self._stage_failure(pipe, job, reason)
            await pipe.execute()
        await self._after_failure(job)
        return job

    def _stage_failure(self, pipe, job: Job, reason: str):
        now = self.clock()
        job.attempts_made += 1
        job.failed_reason = reason
        pipe.lrem(self._k("active"), 0, job.id)
        pipe.delete(self._k("lock", job.id))
        if job.attempts_made < job.max_attempts:
            delay = job.backoff.delay_for(job.attempts_made)
            job.state = JobState.DELAYED
            job.next_delay_ms = delay
            pipe.hset(self._job_key(job.id), mapping={
                "state": job.state.value,
                "attempts_made": str(job.attempts_made),
                "failed_reason": reason,
                "next_delay_ms": str(delay),
            })
            pipe.zadd(self._k("delayed"), {job.id: now + delay})
        else:
            job.state = JobState.FAILED
            job.finished_at = now
            job.next_delay_ms = None
            pipe.hset(self._job_key(job.id), mapping={
                "state": job.state.value,
                "attempts_made": str(job.attempts_made),
                "failed_reason": reason,
                "finished_at": str(now),
                "next_delay_ms": "",
            })
            pipe.zadd(self._terminal_key(JobState.FAILED), {job.id: now})

    async def _after_failure(self, job: Job):
        if job.state is JobState.DELAYED:
            log.warning("job_retry_scheduled", job_id=job.id, attempt=job.attempts_made,
                        max_attempts=job.max_attempts, delay_ms=job.next_delay_ms, reason=job.failed_reason)
        else:
            log.error("job_failed", job_id=job.id, attempts=job.attempts_made, reason=job.failed_reason)
            await self._trim(JobState.FAILED, job.keep_failed)

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose backoff has elapsed back to the wait list."""
        due = await self.redis.zrangebyscore(self._k("delayed"), "-inf", self.clock())
        moved = 0
        for job_id in due:
            job_id = _s(job_id)
            # ZREM decides the winner when several consumers promote at once
            if await self.redis.zrem(self._k("delayed"), job_id):
                await self.redis.hset(self._job_key(job_id), "state", JobState.WAITING.value)
                await self.redis.lpush(self._k("wait"), job_id)
                moved += 1
        return moved

    async def recover_stalled(self) -> List[str]:
        """Fail active jobs whose consumer lock expired (consumer died mid-job)."""
        stalled = []
        for job_id in await self.redis.lrange(self._k("active"), 0, -1):
            job_id = _s(job_id)
            if await self._recover(job_id):
                stalled.append(job_id)
        if stalled:
            log.warning("jobs_stalled", job_ids=stalled)
        return stalled

    async def _recover(self, job_id: str) -> bool:
        lock_key = self._k("lock", job_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                # a claim, completion or failure racing with us aborts the EXEC
                await pipe.watch(lock_key, self._job_key(job_id))
                if await pipe.exists(lock_key):
                    return False
                job = await self.get_job(job_id)
                if job is None:
                    pipe.multi()
                    pipe.lrem(self._k("active"), 0, job_id)
                    await pipe.execute()
                    return False
                if job.state is not JobState.ACTIVE:
                    return False
                pipe.multi()
                self._stage_failure(pipe, job, "job stalled")
                await pipe.execute()
            except WatchError:
                return False
        await self._after_failure(job)
        return True

    # ------------------------------------------------------------------
    # inspection / admin
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[Job]:
        h = await self.redis.hgetall(self._job_key(job_id))
        keys = {_s(k) for k in h}
        if "id" not in keys or "state" not in keys:
            return None
        return Job.from_hash({_s(k): _s(v) for k, v in h.items()})

    async def get_state(self, job_id: str) -> JobState:
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job.state

    async def counts(self) -> Dict[str, Any]:
        waiting = await self.redis.llen(self._k("wait"))
        active = await self.redis.llen(self._k("active"))
        delayed = await self.redis.zcard(self._k("delayed"))
        completed = await self.redis.zcard(self._terminal_key(JobState.COMPLETED))
        failed = await self.redis.zcard(self._terminal_key(JobState.FAILED))
        return {
            "waiting": waiting,
            "active": active,
            "delayed": delayed,
            "completed": completed,
            "failed": failed,
            "total": waiting + active + delayed + completed + failed,
            "paused": await self.is_paused(),
        }

    async def clean(self, state: JobState, older_than_ms: int = 0, limit: int = 1000) -> List[str]:
        """Delete terminal jobs finished more than `older_than_ms` ago."""
        if state not in (JobState.COMPLETED, JobState.FAILED):
            raise ValueError(f"can only clean terminal states, got {state.value}")
        key = self._terminal_key(state)
        cutoff = self.clock() - older_than_ms
        ids = [_s(i) for i in await self.redis.zrangebyscore(key, "-inf", cutoff, start=0, num=limit)]
        await self._remove(key, ids)
        log.info("jobs_cleaned", state=state.value, count=len(ids))
        return ids

    async def retry(self, job_id: str) -> bool:
        """Operator retry of a failed job: attempts reset, back on the wait list."""
        if not await self.redis.zrem(self._terminal_key(JobState.FAILED), job_id):
            return False
        await self.redis.hset(self._job_key(job_id), mapping={
            "state": JobState.WAITING.value,
            "attempts_made": "0",
            "failed_reason": "",
            "finished_at": "",
        })
        await self.redis.lpush(self._k("wait"), job_id)
        log.info("job_manual_retry", job_id=job_id)
        return True

    async def retry_failed(self) -> List[str]:
        ids = [_s(i) for i in await self.redis.zrange(self._terminal_key(JobState.FAILED), 0, -1)]
        return [i for i in ids if await self.retry(i)]

    async def pause(self):
        await self.redis.set(self._k("paused"), "1")
        log.info("queue_paused", queue=self.name)

    async def resume(self):
        await self.redis.delete(self._k("paused"))
        log.info("queue_resumed", queue=self.name)

    async def is_paused(self) -> bool:
        return bool(await self.redis.exists(self._k("paused")))

    async def close(self):
        await self.redis.aclose()

    async def _trim(self, state: JobState, keep: int):
        if keep < 0:
            return
        key = self._terminal_key(state)
        stale = [_s(i) for i in await self.redis.zrange(key, 0, -(keep + 1))]
        await self._remove(key, stale)

    async def _remove(self, zkey: str, ids: List[str]):
        if not ids:
            return
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(zkey, *ids)
            pipe.delete(*[self._job_key(i) for i in ids])
            await pipe.execute()
