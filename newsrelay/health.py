"""
Liveness and metrics endpoints.

``/health`` answers 503 with ``status: degraded`` while Redis or the database
is unreachable, so a load balancer stops routing sockets to an instance whose
hub can no longer authenticate users or receive worker events.
"""
from typing import Awaitable

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from .observability import registry

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _probe(name: str, check: Awaitable) -> str:
    try:
        await check
    except (RedisError, SQLAlchemyError, OSError) as e:
        logger.warning("health_check_failed", dependency=name, error=str(e))
        return "down"
    return "up"


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    checks = {
        "redis": await _probe("redis", state.redis.ping()),
        "database": await _probe("database", state.article_store.ping()),
    }
    healthy = all(v == "up" for v in checks.values())
    body = {
        "status": "ok" if healthy else "degraded",
        "checks": checks,
        "sessions": {
            "connected": state.hub.connected_count(),
            "authenticated": state.hub.authenticated_count(),
        },
    }
    return JSONResponse(body, status_code=200 if healthy else 503)


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
