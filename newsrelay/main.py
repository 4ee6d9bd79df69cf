"""
newsrelay API process

Wires storage, the job queue, the real-time hub, the optional in-process
worker, the ingest scheduler and the cross-process event relay into one
FastAPI app. Every collaborator can be injected, which is how the tests run
the app against fakeredis and in-memory SQLite.
"""
import contextlib
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
import structlog
from fastapi import FastAPI
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker

from .adapters import SourceAdapter
from .api import admin_router, ingest_router, realtime_router
from .config import Settings, settings as default_settings
from .db import create_schema, make_engine, make_session_factory
from .enrichment import Enricher
from .health import router as health_router
from .hub import RealtimeHub, SessionRegistry, StreamRelay
from .hub.ws import router as ws_router
from .observability import log_startup_info, setup_logging
from .queue import JobQueue
from .scheduler import IngestScheduler
from .store import ArticleStore, UserStore
from .worker import IngestionWorker

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    redis: Optional[Redis] = None,
    session_factory: Optional[async_sessionmaker] = None,
    adapters: Optional[List[SourceAdapter]] = None,
    enricher: Optional[Enricher] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, service=settings.SERVICE_NAME)
        log_startup_info(settings, role="api")
        state = app.state

        # Storage
        state.engine = None
        sf = session_factory
        if sf is None:
            state.engine = make_engine(settings.DATABASE_URL)
            await create_schema(state.engine)
            sf = make_session_factory(state.engine)
        state.article_store = ArticleStore(sf)
        state.user_store = UserStore(sf)

        # Redis + queue
        state.redis = redis or Redis.from_url(settings.REDIS_URL, decode_responses=True)
        state.queue = JobQueue.from_settings(settings, state.redis)

        # Real-time hub
        state.hub = RealtimeHub(
            SessionRegistry(settings.HUB_OUTBOX_SIZE),
            state.user_store,
            settings.JWT_SECRET,
            settings.JWT_ALGORITHM,
        )
        await state.hub.init()

        state.http = httpx.AsyncClient(timeout=httpx.Timeout(settings.SOURCE_TIMEOUT_SECONDS))

        state.worker = None
        if settings.RUN_WORKER_IN_PROCESS:
            state.worker = IngestionWorker.from_settings(
                settings,
                state.queue,
                state.article_store,
                emitter=state.hub,
                client=state.http,
                adapters=adapters,
                enricher=enricher,
            )
            await state.worker.start()

        state.relay = None
        if settings.RUN_EVENT_RELAY:
            state.relay = StreamRelay(state.redis, settings.EVENT_STREAM, state.hub)
            await state.relay.start()

        state.scheduler = IngestScheduler(state.queue, settings, settings.INGEST_INTERVAL_SECONDS)
        await state.scheduler.start()

        logger.info("service_started", service=settings.SERVICE_NAME)
        yield

        logger.info("service_stopping", service=settings.SERVICE_NAME)
        with contextlib.suppress(Exception):
            await state.scheduler.stop()
        with contextlib.suppress(Exception):
            if state.relay:
                await state.relay.stop()
        with contextlib.suppress(Exception):
            if state.worker:
                await state.worker.stop()
                await state.worker.enricher.close()
        with contextlib.suppress(Exception):
            await state.hub.shutdown()
        with contextlib.suppress(Exception):
            await state.http.aclose()
        if redis is None:
            with contextlib.suppress(Exception):
                await state.redis.aclose()
        if state.engine is not None:
            with contextlib.suppress(Exception):
                await state.engine.dispose()

    app = FastAPI(
        title="newsrelay",
        description="News ingestion pipeline and real-time distribution hub",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.include_router(health_router)
    app.include_router(ingest_router)
    app.include_router(realtime_router)
    app.include_router(admin_router)
    app.include_router(ws_router)
    return app


app = create_app()
