import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import fakeredis.aioredis
import jwt
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from newsrelay.adapters.base import SourceAdapter
from newsrelay.config import Settings
from newsrelay.db import create_schema, make_session_factory
from newsrelay.normalizer import build_article
from newsrelay.queue import JobQueue
from newsrelay.store import ArticleStore, UserStore

JWT_SECRET = "test-secret"


class FakeClock:
    """Millisecond clock the queue reads instead of wall time"""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class RecordingEmitter:
    """Emitter double; keeps every emission as (kind, target, event, data)"""

    def __init__(self):
        self.calls: List[Tuple[str, Optional[str], str, Dict[str, Any]]] = []

    async def to_room(self, room, event, data):
        self.calls.append(("room", room, event, data))
        return 1

    async def to_all(self, event, data):
        self.calls.append(("all", None, event, data))
        return 1

    async def to_user(self, user_id, event, data):
        self.calls.append(("user", user_id, event, data))
        return 1

    def events(self, name: str):
        return [c for c in self.calls if c[2] == name]


class StaticAdapter(SourceAdapter):
    """Provider double: returns canned items after `delay` seconds, or raises `error` from fetch()"""

    def __init__(self, name: str, items=None, error: Optional[Exception] = None, delay: float = 0):
        super().__init__()
        self.name = name
        self.items = items or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.items)

    def normalize(self, item):
        return build_article(
            self.name,
            title=item.get("title"),
            description=item.get("description"),
            url=item.get("url"),
            published_at=item.get("publishedAt"),
        )


def make_token(user_id: str = "u1", secret: str = JWT_SECRET) -> str:
    return jwt.encode({"id": user_id}, secret, algorithm="HS256")


def make_settings(**overrides) -> Settings:
    values = dict(
        JWT_SECRET=JWT_SECRET,
        RUN_WORKER_IN_PROCESS=False,
        RUN_EVENT_RELAY=False,
        INGEST_INTERVAL_SECONDS=0,
        ML_SERVICE_ENABLED=False,
        LOG_LEVEL="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest_asyncio.fixture
async def redis():
    r = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield r
    await r.flushall()
    await r.aclose()


@pytest_asyncio.fixture
async def queue(redis, clock):
    return JobQueue(redis, name="news-ingest", prefix="test", lock_ms=60_000, clock=clock)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def article_store(session_factory):
    return ArticleStore(session_factory)


@pytest_asyncio.fixture
async def user_store(session_factory):
    return UserStore(session_factory)


@pytest.fixture
def emitter():
    return RecordingEmitter()


def published(day: int = 1) -> str:
    return datetime(2024, 5, day, 12, 0, tzinfo=timezone.utc).isoformat()
