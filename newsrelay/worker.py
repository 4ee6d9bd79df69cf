"""
Ingestion Worker
Consumes ``fetchAndProcessNews`` jobs from the queue.

One job run:
1. fetch every selected source concurrently (a failing source yields nothing)
2. per article, sequentially: dedup check, enrichment, upsert
3. announce each genuinely new article to the hub, escalate breaking ones
4. broadcast one analytics snapshot for the batch

Per-article failures are logged and counted; only systemic database errors
fail the job so the queue retries it with backoff.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from .adapters import SourceAdapter, build_adapters, select_adapters
from .analytics import build_snapshot
from .breaking import BreakingNewsPolicy
from .enrichment import Enricher
from .hub import notify
from .hub.notify import Emitter
from .observability import articles_total, job_duration_seconds, jobs_total
from .queue import Job, JobQueue
from .schema import NormalizedArticle, utcnow
from .store import ArticleStore, is_systemic_db_error

logger = structlog.get_logger(__name__)


class IngestionWorker:
    def __init__(
        self,
        queue: JobQueue,
        adapters: List[SourceAdapter],
        articles: ArticleStore,
        enricher: Enricher,
        emitter: Optional[Emitter],
        policy: BreakingNewsPolicy,
        source_timeout: float = 15.0,
        job_timeout: float = 600.0,
        poll_seconds: int = 5,
        stalled_check_seconds: int = 30,
    ):
        self.queue = queue
        self.adapters = adapters
        self.articles = articles
        self.enricher = enricher
        self.emitter = emitter
        self.policy = policy
        self.source_timeout = source_timeout
        self.job_timeout = job_timeout
        self.poll_seconds = poll_seconds
        self.stalled_check_seconds = stalled_check_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @classmethod
    def from_settings(
        cls,
        settings,
        queue: JobQueue,
        articles: ArticleStore,
        emitter: Optional[Emitter],
        client: Optional[httpx.AsyncClient] = None,
        adapters: Optional[List[SourceAdapter]] = None,
        enricher: Optional[Enricher] = None,
    ) -> "IngestionWorker":
        return cls(
            queue=queue,
            adapters=adapters if adapters is not None else build_adapters(settings, client),
            articles=articles,
            enricher=enricher or Enricher.from_settings(settings, client),
            emitter=emitter,
            policy=BreakingNewsPolicy.from_settings(settings),
            source_timeout=settings.SOURCE_TIMEOUT_SECONDS,
            job_timeout=settings.JOB_TIMEOUT_SECONDS,
            poll_seconds=settings.WORKER_POLL_SECONDS,
            stalled_check_seconds=settings.STALLED_CHECK_SECONDS,
        )

    # ------------------------------------------------------------------
    # job body
    # ------------------------------------------------------------------

    async def process(self, job: Job) -> Dict[str, Any]:
        started_at = datetime.now(timezone.utc)
        selector = (job.payload or {}).get("source") or "all"
        adapters = select_adapters(self.adapters, selector)
        if not adapters:
            logger.warning("no_matching_sources", job_id=job.id, source=selector)

        batches = await asyncio.gather(
            *(a.fetch_safe(self.source_timeout) for a in adapters)
        )
        candidates: List[NormalizedArticle] = []
        sources: Dict[str, int] = {}
        for adapter, items in zip(adapters, batches):
            normalized = adapter.normalize_all(items)
            sources[adapter.name] = len(normalized)
            candidates.extend(normalized)

        new_articles: List[NormalizedArticle] = []
        processed = skipped = errors = 0
        for article in candidates:
            try:
                outcome = await self._process_article(article)
            except Exception as e:
                if is_systemic_db_error(e) or isinstance(e, RedisConnectionError):
                    raise
                errors += 1
                articles_total.labels(outcome="error").inc()
                logger.error("article_failed", job_id=job.id, url=article.url, error=str(e))
                continue
            if outcome is None:
                skipped += 1
                continue
            processed += 1
            if outcome is not False:
                new_articles.append(outcome)

        if new_articles:
            await self._broadcast_analytics(new_articles, processed, started_at)

        result = {
            "fetched": len(candidates),
            "processed": processed,
            "newArticles": len(new_articles),
            "skipped": skipped,
            "errors": errors,
            "sources": sources,
        }
        logger.info("job_processed", job_id=job.id, **{k: v for k, v in result.items() if k != "sources"})
        return result

    async def _process_article(self, article: NormalizedArticle):
        """None when skipped, False when refreshed, the stored article when new"""
        if not article.url:
            articles_total.labels(outcome="skipped").inc()
            return None
        was_known = await self.articles.exists(article.url)
        sentiment, fake = await self.enricher.enrich(article)
        enriched = article.model_copy(update={
            "sentiment_score": sentiment.score,
            "sentiment_label": sentiment.label,
            "is_fake": fake.is_fake,
            "fake_probability": fake.fake_probability,
            "classification_timestamp": utcnow(),
        })
        inserted = await self.articles.upsert(enriched)
        if was_known or not inserted:
            articles_total.labels(outcome="refreshed").inc()
            return False
        articles_total.labels(outcome="new").inc()
        await self._announce(enriched)
        return enriched

    async def _announce(self, article: NormalizedArticle):
        if self.emitter is None:
            return
        stored = await self.articles.get_by_url(article.url)
        target = stored if stored is not None else article
        # emission failures never fail the article
        try:
            await notify.broadcast_new_article(self.emitter, target)
            if self.policy.check(article):
                await notify.send_breaking_news(self.emitter, target, priority="high")
        except (RedisError, RuntimeError) as e:
            logger.warning("announce_failed", url=article.url, error=str(e))

    async def _broadcast_analytics(self, new_articles, processed: int, started_at: datetime):
        if self.emitter is None:
            return
        snapshot = build_snapshot(new_articles, processed, started_at)
        try:
            await notify.broadcast_analytics(self.emitter, snapshot.model_dump(mode="json"))
        except (RedisError, RuntimeError) as e:
            logger.warning("analytics_broadcast_failed", error=str(e))

    # ------------------------------------------------------------------
    # consumer loop
    # ------------------------------------------------------------------

    async def run_job(self, job: Job) -> Job:
        log = logger.bind(job_id=job.id, attempt=job.attempts_made + 1)
        log.info("job_started", source=job.payload.get("source"))
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(self.process(job), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            jobs_total.labels(status="failed").inc()
            return await self.queue.fail(job, f"job timed out after {self.job_timeout}s")
        except Exception as e:
            jobs_total.labels(status="failed").inc()
            log.exception("job_error", error=str(e))
            return await self.queue.fail(job, str(e) or type(e).__name__)
        finally:
            job_duration_seconds.observe(time.perf_counter() - start)
        jobs_total.labels(status="completed").inc()
        log.info("job_completed", new_articles=result["newArticles"])
        return await self.queue.complete(job, result)

    async def run_once(self, timeout: float = 0) -> Optional[Job]:
        job = await self.queue.dequeue(timeout=timeout)
        if job is None:
            return None
        return await self.run_job(job)

    async def run(self, stop: asyncio.Event):
        logger.info("worker_started", queue=self.queue.name, sources=[a.name for a in self.adapters])
        last_stalled_check = 0.0
        while not stop.is_set():
            try:
                now = time.monotonic()
                if now - last_stalled_check >= self.stalled_check_seconds:
                    await self.queue.recover_stalled()
                    last_stalled_check = now
                if await self.queue.is_paused():
                    await self._sleep(stop, self.poll_seconds)
                    continue
                job = await self.run_once(timeout=self.poll_seconds)
                if job is None:
                    await self._sleep(stop, 0.5)
            except RedisError as e:
                logger.error("worker_redis_error", error=str(e))
                await self._sleep(stop, self.poll_seconds)
        logger.info("worker_stopped")

    @staticmethod
    async def _sleep(stop: asyncio.Event, seconds: float):
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def start(self):
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop))

    async def stop(self):
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.poll_seconds + 5)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
