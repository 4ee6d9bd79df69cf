import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..errors import SourceFetchError
from ..observability import source_fetch_errors_total
from ..schema import NormalizedArticle

log = structlog.get_logger(__name__)

RawItem = Dict[str, Any]


class SourceAdapter:
    """One external provider: ``fetch()`` raw items, ``normalize()`` each one.

    Subclasses implement both; ``fetch_safe`` is what the worker calls.
    """

    name: str = "source"

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def fetch(self) -> List[RawItem]:
        raise NotImplementedError

    def normalize(self, item: RawItem) -> NormalizedArticle:
        raise NotImplementedError

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        client = self._client or httpx.AsyncClient(timeout=15)
        try:
            r = await client.get(url, params=params)
            if r.status_code >= 300:
                raise SourceFetchError(self.name, f"HTTP {r.status_code}")
            try:
                return r.json()
            except ValueError as e:
                raise SourceFetchError(self.name, f"invalid JSON: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def fetch_safe(self, timeout: float) -> List[RawItem]:
        """Fetch with a deadline; any failure degrades to an empty list for this source only"""
        try:
            items = await asyncio.wait_for(self.fetch(), timeout=timeout)
        except asyncio.TimeoutError:
            self._record_failure("timeout")
            return []
        except Exception as e:
            self._record_failure(str(e))
            return []
        log.info("source_fetched", source=self.name, items=len(items))
        return items

    def normalize_all(self, items: List[RawItem]) -> List[NormalizedArticle]:
        out = []
        for it in items:
            try:
                out.append(self.normalize(it))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                log.warning("normalize_failed", source=self.name, err=str(e))
        return out

    def _record_failure(self, reason: str):
        log.error("source_fetch_failed", source=self.name, err=reason)
        source_fetch_errors_total.labels(source=self.name).inc()
