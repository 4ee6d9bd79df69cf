from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional

from .schema import AnalyticsSnapshot


def build_snapshot(
    new_articles: Iterable,
    total_processed: int,
    started_at: datetime,
    now: Optional[datetime] = None,
) -> AnalyticsSnapshot:
    """Per-batch rollup of the articles one job run created. Not stored."""
    now = now or datetime.now(timezone.utc)
    articles = list(new_articles)
    categories = Counter(a.category or "General" for a in articles)
    sources = Counter(a.source for a in articles)
    elapsed_ms = max(0, int((now - started_at).total_seconds() * 1000))
    return AnalyticsSnapshot(
        newArticlesCount=len(articles),
        totalProcessed=total_processed,
        categories=dict(categories),
        sources=dict(sources),
        processingTimeMs=elapsed_ms,
        timestamp=now,
    )
