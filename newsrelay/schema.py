from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NormalizedArticle(BaseModel):
    """Canonical article shape produced by every source adapter"""
    source: str
    author: str = ""
    title: str = ""
    description: str = ""
    content: str = ""
    url: Optional[str] = None
    image_url: str = ""
    published_at: datetime = Field(default_factory=utcnow)
    category: str = "General"

    # ML fields, refreshed on every processing pass
    sentiment_score: Optional[float] = None
    sentiment_label: Optional[str] = None
    is_fake: bool = False
    fake_probability: float = 0.5
    classification_timestamp: Optional[datetime] = None

    @property
    def dedup_key(self) -> Optional[str]:
        return self.url

    def content_fields(self) -> Dict[str, Any]:
        """Identity/content columns, written only when the row is created"""
        return self.model_dump(include={
            "source", "author", "title", "description", "content", "url",
            "image_url", "published_at", "category",
        })

    def ml_fields(self) -> Dict[str, Any]:
        """Derived columns, written on every pass"""
        return self.model_dump(include={
            "sentiment_score", "sentiment_label", "is_fake",
            "fake_probability", "classification_timestamp",
        })


class SentimentResult(BaseModel):
    score: float = 0.0
    label: str = "neutral"


class FakeNewsResult(BaseModel):
    is_fake: bool = False
    fake_probability: float = 0.5


class ArticleView(BaseModel):
    """Article payload embedded in socket events"""
    id: Optional[int] = None
    title: str
    description: str = ""
    category: Optional[str] = None
    source: Optional[str] = None
    publishedAt: Optional[datetime] = None
    url: Optional[str] = None
    urlToImage: Optional[str] = None


class AnalyticsSnapshot(BaseModel):
    newArticlesCount: int
    totalProcessed: int
    categories: Dict[str, int]
    sources: Dict[str, int]
    processingTimeMs: int
    timestamp: datetime = Field(default_factory=utcnow)


# -----------------------------------------------------------------------------
# Job payload / HTTP bodies
# -----------------------------------------------------------------------------

class BackoffIn(BaseModel):
    type: Literal["exponential"] = "exponential"
    delayMs: int = Field(2000, ge=0)


class IngestRequest(BaseModel):
    source: str = "all"
    jobId: Optional[str] = None
    maxAttempts: Optional[int] = Field(None, ge=1, le=20)
    backoff: Optional[BackoffIn] = None


class IngestResponse(BaseModel):
    status: str
    jobId: str
    source: str


class BroadcastNewsRequest(BaseModel):
    articleId: int
    priority: Literal["low", "medium", "high"] = "medium"


class NotificationIn(BaseModel):
    title: str
    message: str
    type: Optional[str] = None


class NotifyUserRequest(BaseModel):
    userId: str
    notification: NotificationIn


class AnalyticsUpdateRequest(BaseModel):
    data: Dict[str, Any]


class CleanRequest(BaseModel):
    state: Literal["completed", "failed", "all"] = "all"
    olderThanMs: int = Field(0, ge=0)
