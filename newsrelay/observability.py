"""
Metrics registry and logging setup shared by the API process and the worker.
"""
import logging
import sys
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

registry = CollectorRegistry()

# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

# Job metrics
jobs_total = Counter(
    'newsrelay_jobs_total',
    'Ingest jobs finished',
    ['status'],
    registry=registry,
)
job_duration_seconds = Histogram(
    'newsrelay_job_duration_seconds',
    'Wall time of one ingest job',
    buckets=[1, 5, 15, 30, 60, 120, 300, 600],
    registry=registry,
)

# Pipeline metrics
source_fetch_errors_total = Counter(
    'newsrelay_source_fetch_errors_total',
    'Source adapter calls that degraded to an empty result',
    ['source'],
    registry=registry,
)
articles_total = Counter(
    'newsrelay_articles_total',
    'Articles seen by the worker',
    ['outcome'],  # new, refreshed, skipped, error
    registry=registry,
)
enrichment_fallbacks_total = Counter(
    'newsrelay_enrichment_fallbacks_total',
    'Enrichment calls replaced by fallback values',
    ['service'],
    registry=registry,
)

# Hub metrics
ws_sessions = Gauge(
    'newsrelay_ws_sessions',
    'Live WebSocket sessions',
    registry=registry,
)
ws_dropped_total = Counter(
    'newsrelay_ws_dropped_total',
    'Events dropped because a session outbox was full',
    registry=registry,
)

# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(log_level: str = "INFO", log_format: str = "json", service: Optional[str] = None):
    """
    Configure structlog for the API and the worker.

    Logs go to stderr so the admin CLI can print its JSON results on stdout.
    ``service`` is bound into the context vars and shows up on every line,
    which keeps API and worker output apart when both feed one collector.
    """
    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    if service:
        structlog.contextvars.bind_contextvars(service=service)


def log_startup_info(settings, role: str):
    structlog.get_logger(__name__).info(
        "service_starting",
        role=role,
        version=settings.VERSION,
        queue=f"{settings.QUEUE_PREFIX}:{settings.QUEUE_NAME}",
        worker_in_process=settings.RUN_WORKER_IN_PROCESS,
        event_relay=settings.RUN_EVENT_RELAY,
        ml_enabled=settings.ML_SERVICE_ENABLED,
    )
