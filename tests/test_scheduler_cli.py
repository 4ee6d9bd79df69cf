from unittest.mock import patch

import fakeredis
import fakeredis.aioredis
import pytest

from newsrelay import cli
from newsrelay.queue import JobQueue, JobState
from newsrelay.scheduler import IngestScheduler, enqueue_ingest, ingest_job_id


def test_ingest_job_id_format():
    assert ingest_job_id("all", at=1_700_000_000.9) == "news-ingest-all-1700000000"
    assert ingest_job_id("NewsAPI, Guardian", at=5) == "news-ingest-newsapi+guardian-5"


@pytest.mark.asyncio
async def test_enqueue_ingest_applies_settings_defaults(queue, settings):
    job = await enqueue_ingest(queue, settings, source="all", job_id="x")
    assert job.payload == {"type": "fetchAndProcessNews", "source": "all"}
    assert job.max_attempts == settings.JOB_MAX_ATTEMPTS
    assert job.backoff.delay_ms == settings.JOB_BACKOFF_MS
    assert job.keep_completed == settings.JOB_KEEP_COMPLETED


@pytest.mark.asyncio
async def test_scheduler_tick_enqueues_all_sources(queue, settings):
    job = await IngestScheduler(queue, settings, interval=3600).tick()
    assert job.id.startswith("news-ingest-all-")
    assert (await queue.counts())["waiting"] == 1


@pytest.mark.asyncio
async def test_scheduler_disabled_with_zero_interval(queue, settings):
    scheduler = IngestScheduler(queue, settings, interval=0)
    await scheduler.start()
    assert scheduler._task is None
    await scheduler.stop()


def test_parser_rejects_unknown_clean_state():
    parser = cli.build_parser()
    assert parser.parse_args(["clean", "failed", "--older-than-ms", "50"]).older_than_ms == 50
    with pytest.raises(SystemExit):
        parser.parse_args(["clean", "waiting"])


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


async def _run(argv, fake_server):
    # run_admin closes its queue, so every call gets a fresh client on the shared server
    queue = JobQueue(fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True), prefix="cli")
    args = cli.build_parser().parse_args(argv)
    with patch.object(cli.JobQueue, "from_settings", return_value=queue):
        return await cli.run_admin(args)


@pytest.mark.asyncio
async def test_cli_enqueue_and_stats(fake_server):
    out = await _run(["enqueue", "--source", "all", "--job-id", "cli-1"], fake_server)
    assert out == {"jobId": "cli-1", "state": JobState.WAITING.value}
    stats = await _run(["stats"], fake_server)
    assert stats["waiting"] == 1


@pytest.mark.asyncio
async def test_cli_pause_resume_retry_clean(fake_server):
    assert await _run(["pause"], fake_server) == {"paused": True}
    assert (await _run(["stats"], fake_server))["paused"] is True
    assert await _run(["resume"], fake_server) == {"paused": False}
    assert await _run(["retry"], fake_server) == {"retried": 0, "jobIds": []}
    assert await _run(["clean", "all"], fake_server) == {"completed": 0, "failed": 0}
