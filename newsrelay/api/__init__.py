from .admin import router as admin_router
from .ingest import router as ingest_router
from .realtime import router as realtime_router

__all__ = ["admin_router", "ingest_router", "realtime_router"]
