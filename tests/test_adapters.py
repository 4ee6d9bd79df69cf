from datetime import datetime, timezone

import httpx
import pytest
import respx

from newsrelay.adapters import (
    GNewsAdapter,
    GuardianAdapter,
    MediastackAdapter,
    NewsAPIAdapter,
    NewsdataAdapter,
    build_adapters,
    select_adapters,
    unknown_sources,
)
from newsrelay.normalizer import canon_author, parse_published, sanitize_html

from conftest import StaticAdapter, make_settings

def test_sanitize_html_strips_markup():
    assert sanitize_html("<p>Hello <b>world</b></p>") == "Hello world"
    assert sanitize_html("  plain  ") == "plain"
    assert sanitize_html(None) == ""

def test_canon_author_joins_lists():
    assert canon_author(["Ann", " Bo ", ""]) == "Ann, Bo"
    assert canon_author(None) == ""

def test_parse_published_is_utc_aware():
    dt = parse_published("2024-05-01 10:00:00")
    assert dt == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_published("2024-05-01T12:00:00+02:00").hour == 10
    assert parse_published("not a date").tzinfo is not None

def test_newsapi_normalize():
    a = NewsAPIAdapter("k").normalize({
        "title": "Senate votes on budget",
        "description": "<p>Late night session</p>",
        "url": "https://n.example/1",
        "author": "Reporter",
        "content": "Body",
        "urlToImage": "https://img/1.png",
        "publishedAt": "2024-05-01T10:00:00Z",
    })
    assert a.source == "NewsAPI"
    assert a.description == "Late night session"
    assert a.image_url == "https://img/1.png"
    assert a.category == "Politics"
    assert a.dedup_key == "https://n.example/1"

def test_gnews_uses_image_field():
    a = GNewsAdapter("k").normalize({"title": "x", "url": "https://g/1", "image": "https://img/g.png"})
    assert a.source == "GNews"
    assert a.image_url == "https://img/g.png"

def test_mediastack_description_doubles_as_content():
    a = MediastackAdapter("k").normalize({
        "title": "t", "description": "d", "url": "https://m/1", "published_at": "2024-05-01T00:00:00+00:00",
    })
    assert a.content == "d"

def test_guardian_reads_fields_block():
    a = GuardianAdapter("k").normalize({
        "webTitle": "Guardian piece",
        "webUrl": "https://theguardian.example/1",
        "webPublicationDate": "2024-05-01T08:00:00Z",
        "fields": {"trailText": "trail", "byline": "Writer", "thumbnail": "https://img/t.jpg", "bodyText": "body"},
    })
    assert (a.title, a.description, a.author, a.content) == ("Guardian piece", "trail", "Writer", "body")
    assert a.image_url == "https://img/t.jpg"

def test_newsdata_creator_list():
    a = NewsdataAdapter("k").normalize({
        "title": "t", "link": "https://nd/1", "creator": ["A", "B"], "pubDate": "2024-05-01 06:00:00",
    })
    assert a.url == "https://nd/1"
    assert a.author == "A, B"

def test_missing_url_normalizes_to_none():
    a = NewsAPIAdapter("k").normalize({"title": "no link", "url": "  "})
    assert a.url is None

@pytest.mark.asyncio
async def test_newsapi_fetch_reads_articles():
    with respx.mock:
        respx.get("https://newsapi.org/v2/top-headlines").mock(
            return_value=httpx.Response(200, json={"status": "ok", "articles": [{"title": "a", "url": "https://x/1"}]})
        )
        async with httpx.AsyncClient() as client:
            items = await NewsAPIAdapter("k", client).fetch_safe(timeout=5)
    assert items == [{"title": "a", "url": "https://x/1"}]

@pytest.mark.asyncio
async def test_fetch_safe_degrades_non_2xx_to_empty():
    with respx.mock:
        respx.get("https://content.guardianapis.com/search").mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as client:
            adapter = GuardianAdapter("k", client)
            assert await adapter.fetch_safe(timeout=5) == []

@pytest.mark.asyncio
async def test_fetch_safe_degrades_arbitrary_exceptions():
    adapter = StaticAdapter("Broken", error=KeyError("boom"))
    assert await adapter.fetch_safe(timeout=1) == []

@pytest.mark.asyncio
async def test_fetch_safe_degrades_timeout_to_empty():
    adapter = StaticAdapter("Slow", items=[{"title": "late", "url": "https://s/1"}], delay=1)
    assert await adapter.fetch_safe(timeout=0.01) == []

@pytest.mark.asyncio
async def test_failing_source_is_still_called_on_every_fetch():
    adapter = StaticAdapter("Broken", error=RuntimeError("down"))
    for _ in range(6):
        assert await adapter.fetch_safe(timeout=1) == []
    assert adapter.calls == 6

    adapter.error = None
    adapter.items = [{"title": "back", "url": "https://b/1"}]
    assert await adapter.fetch_safe(timeout=1) == adapter.items


def test_build_adapters_only_configured():
    adapters = build_adapters(make_settings(NEWSAPI_KEY="a", GUARDIAN_KEY="b"))
    assert [a.name for a in adapters] == ["NewsAPI", "Guardian"]
    assert build_adapters(make_settings()) == []

def test_select_adapters():
    adapters = [StaticAdapter("NewsAPI"), StaticAdapter("Guardian"), StaticAdapter("GNews")]
    assert len(select_adapters(adapters, "all")) == 3
    assert [a.name for a in select_adapters(adapters, "guardian, gnews")] == ["Guardian", "GNews"]
    assert select_adapters(adapters, "nope") == []

def test_unknown_sources():
    assert unknown_sources("all") == []
    assert unknown_sources("NewsAPI,Guardian") == []
    assert unknown_sources("newsapi,bogus") == ["bogus"]
