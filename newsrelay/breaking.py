"""Breaking-news escalation rule."""
from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass(frozen=True)
class BreakingNewsPolicy:
    """An article is breaking when ANY of these holds:

    - its sentiment score is above ``sentiment_threshold``
    - its source is in ``trusted_sources`` (case-insensitive)
    - its category is one of ``urgent_categories`` (case-insensitive)
    """
    sentiment_threshold: float = 0.7
    trusted_sources: frozenset = field(default_factory=lambda: frozenset({"bbc", "reuters", "ap news", "guardian"}))
    urgent_categories: frozenset = field(default_factory=lambda: frozenset({"politics"}))

    @classmethod
    def build(
        cls,
        sentiment_threshold: float,
        trusted_sources: Iterable[str],
        urgent_categories: Iterable[str],
    ) -> "BreakingNewsPolicy":
        return cls(
            sentiment_threshold=sentiment_threshold,
            trusted_sources=frozenset(s.lower() for s in trusted_sources),
            urgent_categories=frozenset(c.lower() for c in urgent_categories),
        )

    @classmethod
    def from_settings(cls, settings) -> "BreakingNewsPolicy":
        return cls.build(
            settings.BREAKING_SENTIMENT_THRESHOLD,
            settings.trusted_sources,
            settings.urgent_categories,
        )

    def is_breaking(
        self,
        sentiment_score: Optional[float],
        source: Optional[str],
        category: Optional[str],
    ) -> bool:
        if sentiment_score is not None and sentiment_score > self.sentiment_threshold:
            return True
        if source and source.lower() in self.trusted_sources:
            return True
        return bool(category) and category.lower() in self.urgent_categories

    def check(self, article) -> bool:
        """`is_breaking` over anything with sentiment_score/source/category attributes"""
        return self.is_breaking(article.sentiment_score, article.source, article.category)
