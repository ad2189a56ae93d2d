import pytest

from app.jobs import match_sweep_job, runtime, worker
from app.models.domain.matching_domain import SweepResult


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_exposes_sweep_and_reminder_jobs():
    assert set(worker.JOB_REGISTRY) == {
        "match_sweep",
        "match_sweep_once",
        "recording_reminders",
        "recording_reminders_once",
    }


class StubEngine:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    async def run_sweep(self, triggered_by=None):
        self.calls.append(triggered_by)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_match_sweep_job_returns_summary():
    engine = StubEngine([SweepResult(pairs_examined=2, matches_created=1, match_ids=["m-1"])])

    summary = await match_sweep_job.run_match_sweep_job(engine)

    assert engine.calls == ["scheduler"]
    assert summary["matches_created"] == 1
    assert summary["match_ids"] == ["m-1"]


@pytest.mark.asyncio
async def test_scheduler_survives_failed_cycle(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(runtime.asyncio, "sleep", fake_sleep)
    engine = StubEngine([RuntimeError("store down"), SweepResult(), SweepResult()])

    await match_sweep_job.start_match_sweep_scheduler(
        engine_factory=lambda: engine, interval_minutes=5, max_cycles=3
    )

    assert len(engine.calls) == 3
    assert sleeps == [runtime.ERROR_BACKOFF_SECONDS, 300]


def test_requested_job_prefers_command_line(monkeypatch):
    monkeypatch.setenv("WORKER_JOB", "match_sweep")

    assert worker.requested_job(["Match_Sweep_Once"]) == "match_sweep_once"
    assert worker.requested_job([]) == "match_sweep"


@pytest.mark.asyncio
async def test_worker_resources_close_pool_when_redis_fails(monkeypatch):
    closed = []

    async def noop():
        return None

    async def close_pool():
        closed.append("db")

    async def redis_down():
        raise ConnectionError("redis unreachable")

    monkeypatch.setattr(runtime.db_pool, "initialize", noop)
    monkeypatch.setattr(runtime.db_pool, "close", close_pool)
    monkeypatch.setattr(runtime.document_store, "ensure_schema", noop)
    monkeypatch.setattr(runtime.fast_redis, "initialize", redis_down)

    with pytest.raises(ConnectionError):
        async with runtime.worker_resources():
            pytest.fail("resources should not be yielded")

    assert closed == ["db"]
