from typing import List, Optional

import httpx
import structlog

from .base import RawItem, SourceAdapter
from .guardian import GuardianAdapter
from .mediastack import MediastackAdapter
from .newsapi import GNewsAdapter, NewsAPIAdapter
from .newsdata import NewsdataAdapter

log = structlog.get_logger(__name__)

__all__ = [
    "GNewsAdapter",
    "GuardianAdapter",
    "MediastackAdapter",
    "NewsAPIAdapter",
    "NewsdataAdapter",
    "PROVIDER_NAMES",
    "RawItem",
    "SourceAdapter",
    "build_adapters",
    "select_adapters",
    "unknown_sources",
]


def build_adapters(settings, client: Optional[httpx.AsyncClient] = None) -> List[SourceAdapter]:
    """Instantiate every provider whose API key is configured"""
    adapters: List[SourceAdapter] = []
    if settings.NEWSAPI_KEY:
        adapters.append(NewsAPIAdapter(settings.NEWSAPI_KEY, client))
    if settings.GNEWS_KEY:
        adapters.append(GNewsAdapter(settings.GNEWS_KEY, client))
    if settings.MEDIASTACK_KEY:
        adapters.append(MediastackAdapter(settings.MEDIASTACK_KEY, client))
    if settings.GUARDIAN_KEY:
        adapters.append(GuardianAdapter(settings.GUARDIAN_KEY, client))
    if settings.NEWSDATA_KEY:
        adapters.append(NewsdataAdapter(settings.NEWSDATA_KEY, client))
    if not adapters:
        log.warning("no_source_adapters_configured")
    return adapters


def select_adapters(adapters: List[SourceAdapter], selector: Optional[str]) -> List[SourceAdapter]:
    """`all` (or empty) selects every adapter; otherwise a comma list of names, case-insensitive"""
    sel = (selector or "all").strip().lower()
    if sel == "all":
        return list(adapters)
    wanted = {s.strip() for s in sel.split(",") if s.strip()}
    return [a for a in adapters if a.name.lower() in wanted]


PROVIDER_NAMES = tuple(
    a.name for a in (NewsAPIAdapter, GNewsAdapter, MediastackAdapter, GuardianAdapter, NewsdataAdapter)
)


def unknown_sources(selector: Optional[str]) -> List[str]:
    """Names in a comma selector that match no provider; empty for `all`"""
    sel = (selector or "all").strip().lower()
    if sel == "all":
        return []
    known = {n.lower() for n in PROVIDER_NAMES}
    return [s.strip() for s in sel.split(",") if s.strip() and s.strip() not in known]
