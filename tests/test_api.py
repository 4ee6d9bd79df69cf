from datetime import datetime, timezone
from unittest.mock import AsyncMock

import fakeredis.aioredis
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from newsrelay.main import create_app
from newsrelay.models import Article, Base, User

from conftest import make_settings, make_token

AUTH = {"Authorization": f"Bearer {make_token('u1')}"}


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "api.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    with Session(engine) as s:
        s.add(User(id="u1", username="ann", interests=["World"], sources=["BBC"]))
        s.add(Article(
            id=1,
            url="https://bbc.example/1",
            source="BBC",
            title="Summit opens",
            description="Leaders gather",
            category="World",
            published_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        ))
        s.commit()
    engine.dispose()
    return path


@pytest.fixture
def client(db_path):
    settings = make_settings(DATABASE_URL=f"sqlite+aiosqlite:///{db_path}")
    app = create_app(settings, redis=fakeredis.aioredis.FakeRedis(decode_responses=True))
    with TestClient(app) as c:
        yield c


def test_health_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json() == {
        "status": "ok",
        "checks": {"redis": "up", "database": "up"},
        "sessions": {"connected": 0, "authenticated": 0},
    }
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "newsrelay_jobs_total" in r.text


def test_health_reports_redis_outage(client, monkeypatch):
    monkeypatch.setattr(client.app.state.redis, "ping", AsyncMock(side_effect=RedisConnectionError("refused")))
    r = client.get("/health")
    assert r.status_code == 503
    assert r.json()["status"] == "degraded"
    assert r.json()["checks"] == {"redis": "down", "database": "up"}


def test_ingest_requires_token(client):
    assert client.post("/ingest", json={"source": "all"}).status_code == 401
    bad = {"Authorization": f"Bearer {make_token('u1', secret='wrong')}"}
    assert client.post("/ingest", json={"source": "all"}, headers=bad).status_code == 401


def test_ingest_rejects_unknown_source(client):
    r = client.post("/ingest", json={"source": "newsapi,bogus"}, headers=AUTH)
    assert r.status_code == 400
    assert "bogus" in r.json()["detail"]


def test_ingest_enqueues_once_per_job_id(client):
    body = {"source": "guardian", "jobId": "manual-1", "maxAttempts": 5, "backoff": {"type": "exponential", "delayMs": 1000}}
    first = client.post("/ingest", json=body, headers=AUTH)
    assert first.status_code == 200
    assert first.json() == {"status": "waiting", "jobId": "manual-1", "source": "guardian"}
    assert client.post("/ingest", json=body, headers=AUTH).json()["jobId"] == "manual-1"

    view = client.get("/ingest/manual-1", headers=AUTH).json()
    assert view["state"] == "waiting"
    assert view["maxAttempts"] == 5
    assert view["backoff"] == {"type": "exponential", "delayMs": 1000}
    assert client.get("/admin/queue/stats", headers=AUTH).json()["waiting"] == 1


def test_ingest_default_job_id(client):
    job_id = client.post("/ingest", json={}, headers=AUTH).json()["jobId"]
    assert job_id.startswith("news-ingest-all-")


def test_unknown_job_is_404(client):
    assert client.get("/ingest/nope", headers=AUTH).status_code == 404


def test_admin_queue_controls(client):
    assert client.post("/admin/queue/pause", headers=AUTH).json() == {"paused": True}
    assert client.get("/admin/queue/stats", headers=AUTH).json()["paused"] is True
    assert client.post("/admin/queue/resume", headers=AUTH).json() == {"paused": False}
    assert client.post("/admin/queue/retry-failed", headers=AUTH).json() == {"retried": 0, "jobIds": []}
    cleaned = client.post("/admin/queue/clean", json={"state": "all"}, headers=AUTH).json()
    assert cleaned == {"removed": {"completed": 0, "failed": 0}}
    assert client.get("/admin/queue/stats").status_code == 401


def test_realtime_status_and_online_users(client):
    status = client.get("/realtime/status").json()
    assert status["status"] == "active"
    assert status["connectedUsers"] == 0
    assert client.get("/realtime/online-users/World").json() == {
        "interest": "World", "onlineUsers": [], "count": 0,
    }


def test_broadcast_missing_article_is_404(client):
    r = client.post("/realtime/broadcast-news", json={"articleId": 999}, headers=AUTH)
    assert r.status_code == 404


def test_socket_handshake_and_room_broadcast(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"token": make_token("u1")}})
        authed = ws.receive_json()
        assert authed["event"] == "authenticated"
        assert authed["data"]["user"]["username"] == "ann"
        assert ws.receive_json()["event"] == "user_status_change"

        ws.send_json({"event": "join_news_room", "data": {"category": "World"}})
        assert ws.receive_json() == {"event": "joined_room", "data": {"room": "category:world"}}

        r = client.post("/realtime/broadcast-news", json={"articleId": 1, "priority": "medium"}, headers=AUTH)
        assert r.status_code == 200
        first = ws.receive_json()
        assert first["event"] == "breaking_news"
        assert first["data"]["article"]["title"] == "Summit opens"
        # ann's interest room gets the personalized copy
        assert ws.receive_json()["event"] == "personalized_update"

        online = client.get("/realtime/online-users/world").json()
        assert online["count"] == 1


def test_socket_auth_error(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {}})
        assert ws.receive_json() == {"event": "auth_error", "data": {"message": "No token provided"}}


def test_high_priority_broadcast_is_global_alert(client):
    with client.websocket_connect("/ws") as ws:
        client.post("/realtime/broadcast-news", json={"articleId": 1, "priority": "high"}, headers=AUTH)
        msg = ws.receive_json()
        assert msg["event"] == "breaking_news_alert"
        assert msg["data"]["priority"] == "high"


def test_notify_user_and_analytics(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"token": make_token("u1")}})
        ws.receive_json()
        ws.receive_json()
        r = client.post(
            "/realtime/notify-user",
            json={"userId": "u1", "notification": {"title": "Saved", "message": "Bookmark stored"}},
            headers=AUTH,
        )
        assert r.json() == {"success": True, "delivered": 1}
        note = ws.receive_json()
        assert note["event"] == "notification"
        assert note["data"]["title"] == "Saved"

        client.post("/realtime/analytics-update", json={"data": {"visits": 3}}, headers=AUTH)
        update = ws.receive_json()
        assert update["event"] == "analytics_update"
        assert update["data"]["data"] == {"visits": 3}
