from datetime import datetime, timedelta, timezone

from newsrelay.analytics import build_snapshot
from newsrelay.breaking import BreakingNewsPolicy
from newsrelay.schema import NormalizedArticle

from conftest import make_settings


def _a(source="Local Times", category="General", score=0.0, url="https://x"):
    return NormalizedArticle(source=source, category=category, sentiment_score=score, url=url, title="t")


def test_breaking_by_sentiment_threshold():
    policy = BreakingNewsPolicy()
    assert policy.check(_a(score=0.71)) is True
    assert policy.check(_a(score=0.7)) is False


def test_breaking_by_trusted_source_case_insensitive():
    policy = BreakingNewsPolicy()
    assert policy.check(_a(source="reuters")) is True
    assert policy.check(_a(source="AP News")) is True
    assert policy.check(_a(source="Some Blog")) is False


def test_breaking_by_urgent_category():
    assert BreakingNewsPolicy().check(_a(category="Politics")) is True
    assert BreakingNewsPolicy().check(_a(category="Sports")) is False


def test_policy_from_settings():
    policy = BreakingNewsPolicy.from_settings(make_settings(
        BREAKING_SENTIMENT_THRESHOLD=0.9,
        BREAKING_TRUSTED_SOURCES="Wire",
        BREAKING_URGENT_CATEGORIES="Health, World",
    ))
    assert policy.is_breaking(0.8, "BBC", "Sports") is False
    assert policy.is_breaking(None, "wire", None) is True
    assert policy.is_breaking(None, None, "world") is True


def test_snapshot_counts_per_category_and_source():
    started = datetime(2024, 5, 1, tzinfo=timezone.utc)
    articles = [_a("BBC", "Technology") for _ in range(4)] + [_a("Reuters", "Sports") for _ in range(3)]
    snap = build_snapshot(articles, total_processed=10, started_at=started, now=started + timedelta(seconds=2))
    assert snap.newArticlesCount == 7
    assert snap.totalProcessed == 10
    assert snap.categories == {"Technology": 4, "Sports": 3}
    assert snap.sources == {"BBC": 4, "Reuters": 3}
    assert snap.processingTimeMs == 2000


def test_snapshot_empty_batch():
    now = datetime.now(timezone.utc)
    snap = build_snapshot([], 0, now, now)
    assert snap.newArticlesCount == 0
    assert snap.categories == {}
