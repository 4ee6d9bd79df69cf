"""
Enrichment Clients
Sentiment scorer and fake-news classifier, both black-box HTTP services.

Every public call has a bounded timeout and never raises: a timeout, non-2xx
status or malformed body is logged as ``enrichment_fallback`` and replaced by
the service's fallback value so the article keeps moving through the pipeline.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from .errors import EnrichmentError
from .observability import enrichment_fallbacks_total
from .schema import FakeNewsResult, SentimentResult

logger = structlog.get_logger(__name__)

SENTIMENT_FALLBACK = SentimentResult(score=0.0, label="neutral")
FAKE_NEWS_FALLBACK = FakeNewsResult(is_fake=False, fake_probability=0.5)


class EnrichmentClient:
    """
    Base client for one enrichment endpoint

    Features:
    - Configurable timeout (no retries; a slow model must not stall the job)
    - Shared or owned httpx.AsyncClient
    - Fallback logging distinct from pipeline errors
    """

    def __init__(
        self,
        service_name: str,
        url: str,
        timeout_ms: int = 5000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.service_name = service_name
        self.url = url
        self.timeout_ms = timeout_ms
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_ms / 1000.0))

    async def _post(self, text: str) -> Dict[str, Any]:
        try:
            response = await self.client.post(
                self.url, json={"text": text}, timeout=self.timeout_ms / 1000.0
            )
        except httpx.TimeoutException as e:
            raise EnrichmentError(self.service_name, f"timeout after {self.timeout_ms}ms") from e
        except httpx.HTTPError as e:
            raise EnrichmentError(self.service_name, f"transport error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise EnrichmentError(self.service_name, f"HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise EnrichmentError(self.service_name, "response is not JSON") from e
        if not isinstance(body, dict):
            raise EnrichmentError(self.service_name, "response is not an object")
        return body

    def _fallback(self, err: Exception, **context):
        logger.warning(
            "enrichment_fallback",
            service=self.service_name,
            error=str(err),
            **context,
        )
        enrichment_fallbacks_total.labels(service=self.service_name).inc()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()


class SentimentClient(EnrichmentClient):
    """
    POST {text} -> {"sentiment": {"score": float, "label": str}}
    """

    def __init__(self, url: str, timeout_ms: int = 5000, client: Optional[httpx.AsyncClient] = None):
        super().__init__("sentiment", url, timeout_ms, client)

    async def score(self, text: str, url: Optional[str] = None) -> SentimentResult:
        try:
            body = await self._post(text)
            sentiment = body.get("sentiment")
            if not isinstance(sentiment, dict) or "score" not in sentiment:
                raise EnrichmentError(self.service_name, "missing sentiment.score")
            return SentimentResult(
                score=float(sentiment["score"]),
                label=str(sentiment.get("label") or "neutral"),
            )
        except (EnrichmentError, TypeError, ValueError) as e:
            self._fallback(e, url=url)
            return SENTIMENT_FALLBACK.model_copy()


class FakeNewsClient(EnrichmentClient):
    """
    POST {text} -> {"label": 0|1, "probability": float}
    """

    def __init__(self, url: str, timeout_ms: int = 5000, client: Optional[httpx.AsyncClient] = None):
        super().__init__("fake_news", url, timeout_ms, client)

    async def classify(self, text: str, url: Optional[str] = None) -> FakeNewsResult:
        try:
            body = await self._post(text)
            if "label" not in body or "probability" not in body:
                raise EnrichmentError(self.service_name, "missing label/probability")
            return FakeNewsResult(
                is_fake=int(body["label"]) == 1,
                fake_probability=float(body["probability"]),
            )
        except (EnrichmentError, TypeError, ValueError) as e:
            self._fallback(e, url=url)
            return FAKE_NEWS_FALLBACK.model_copy()


class Enricher:
    """Runs both clients for one article; disabled mode returns the fallbacks untouched."""

    def __init__(
        self,
        sentiment: Optional[SentimentClient],
        fake_news: Optional[FakeNewsClient],
        enabled: bool = True,
    ):
        self.sentiment = sentiment
        self.fake_news = fake_news
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "Enricher":
        return cls(
            SentimentClient(settings.ML_SENTIMENT_URL, settings.ML_TIMEOUT_MS, client),
            FakeNewsClient(settings.ML_FAKE_NEWS_URL, settings.ML_TIMEOUT_MS, client),
            enabled=settings.ML_SERVICE_ENABLED,
        )

    async def enrich(self, article):
        """Returns (SentimentResult, FakeNewsResult) for a NormalizedArticle"""
        if not self.enabled:
            return SENTIMENT_FALLBACK.model_copy(), FAKE_NEWS_FALLBACK.model_copy()
        sentiment_text = article.description or article.content or article.title or ""
        fake_text = " ".join(t for t in (article.title, article.description, article.content) if t)
        sentiment = await self.sentiment.score(sentiment_text, url=article.url)
        fake = await self.fake_news.classify(fake_text, url=article.url)
        return sentiment, fake

    async def close(self):
        for c in (self.sentiment, self.fake_news):
            if c is not None:
                await c.close()
