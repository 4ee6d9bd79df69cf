"""
Server → client event builders.

Each helper takes an emitter (the in-process ``RealtimeHub`` or the
``RedisStreamEmitter`` a standalone worker publishes through) and sends one
event contract. Payload shapes are the public socket contract.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

import structlog

from ..schema import ArticleView
from .registry import category_room, interest_room, source_room

log = structlog.get_logger(__name__)


class Emitter(Protocol):
    async def to_room(self, room: str, event: str, data: Dict[str, Any]) -> int: ...

    async def to_all(self, event: str, data: Dict[str, Any]) -> int: ...

    async def to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> int: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def article_view(article) -> Dict[str, Any]:
    """ORM row or NormalizedArticle -> the article object clients receive"""
    return ArticleView(
        id=getattr(article, "id", None),
        title=article.title,
        description=article.description or "",
        category=article.category,
        source=article.source,
        publishedAt=article.published_at,
        url=article.url,
        urlToImage=article.image_url,
    ).model_dump(mode="json")


async def broadcast_new_article(emitter: Emitter, article) -> None:
    """`breaking_news` to the category and source rooms, `personalized_update` to the interest room."""
    data = {"type": "new_article", "article": article_view(article), "timestamp": _now()}
    if article.category:
        await emitter.to_room(category_room(article.category), "breaking_news", data)
    if article.source:
        await emitter.to_room(source_room(article.source), "breaking_news", data)
    if article.category:
        await emitter.to_room(interest_room(article.category), "personalized_update", data)
    log.info("new_article_broadcast", title=article.title, category=article.category, source=article.source)


async def send_breaking_news(emitter: Emitter, article, priority: str = "high") -> None:
    """Global alert, delivered to every connected session regardless of rooms."""
    await emitter.to_all("breaking_news_alert", {
        "type": "breaking_news",
        "priority": priority,
        "article": article_view(article),
        "timestamp": _now(),
    })
    log.info("breaking_news_alert_sent", title=article.title, priority=priority)


async def send_user_notification(emitter: Emitter, user_id: str, notification: Dict[str, Any]) -> int:
    """Private notification; a user without a live session is a silent no-op."""
    return await emitter.to_user(str(user_id), "notification", {**notification, "timestamp": _now()})


async def broadcast_analytics(emitter: Emitter, data: Dict[str, Any]) -> None:
    await emitter.to_all("analytics_update", {"type": "analytics", "data": data, "timestamp": _now()})


async def broadcast_user_status(emitter: Emitter, user_id: str, status: str) -> None:
    await emitter.to_all("user_status_change", {"userId": user_id, "status": status, "timestamp": _now()})
