"""Tests for the in-process job engine"""
import threading
import time
from datetime import timedelta

import pytest

from devicehub.jobs.engine import JobEngine
from devicehub.models.job_step import JobStep
from devicehub.utils.dates import utcnow


@pytest.fixture
def engine(database):
    engine = JobEngine(database, workers=4, retry_backoff=0)
    yield engine
    engine.close()


def test_runs_handler_for_matching_event(engine):
    seen = []

    @engine.function("collect", trigger="thing/happened")
    def collect(ctx):
        seen.append(ctx.event.data["n"])

    engine.start()
    engine.send("thing/happened", {"n": 1})
    engine.send("other/event", {"n": 2})
    assert engine.wait_idle(5)

    assert seen == [1]


def test_steps_are_memoized_across_retries(engine):
    calls = {"step": 0, "attempts": 0}

    def side_effect():
        calls["step"] += 1
        return {"rows": 42}

    @engine.function("flaky", trigger="flaky/run", max_attempts=3)
    def flaky(ctx):
        calls["attempts"] += 1
        result = ctx.step.run("expensive", side_effect)
        assert result == {"rows": 42}
        if ctx.attempt < 2:
            raise RuntimeError("transient")

    engine.start()
    engine.send("flaky/run", {})
    assert engine.wait_idle(5)

    assert calls == {"step": 1, "attempts": 2}


def test_on_failure_after_max_attempts(engine):
    attempts = []
    failures = []

    @engine.function(
        "doomed",
        trigger="doomed/run",
        max_attempts=3,
        on_failure=lambda ctx, exc: failures.append((ctx.event.data["id"], str(exc))),
    )
    def doomed(ctx):
        attempts.append(ctx.attempt)
        raise ValueError("boom")

    engine.start()
    engine.send("doomed/run", {"id": "x"})
    assert engine.wait_idle(5)

    assert attempts == [1, 2, 3]
    assert failures == [("x", "boom")]


def test_concurrency_key_serializes_runs(engine):
    lock = threading.Lock()
    running = {"user-1": 0}
    peak = {"user-1": 0}
    done = []

    @engine.function("serial", trigger="serial/run", concurrency_key=lambda e: e.data["userId"])
    def serial(ctx):
        key = ctx.event.data["userId"]
        with lock:
            running.setdefault(key, 0)
            running[key] += 1
            peak[key] = max(peak.get(key, 0), running[key])
        time.sleep(0.05)
        with lock:
            running[key] -= 1
            done.append(ctx.event.data["n"])

    engine.start()
    for n in range(4):
        engine.send("serial/run", {"userId": "user-1", "n": n})
    engine.send("serial/run", {"userId": "user-2", "n": 99})
    assert engine.wait_idle(10)

    assert peak["user-1"] == 1
    assert sorted(n for n in done if n != 99) == [0, 1, 2, 3]
    assert 99 in done


def test_idempotency_key_resumes_instead_of_duplicating(engine):
    calls = []

    @engine.function("once", trigger="once/run", idempotency_key=lambda e: e.data["jobId"])
    def once(ctx):
        ctx.step.run("work", lambda: calls.append(ctx.run_id) or len(calls))

    engine.start()
    engine.send("once/run", {"jobId": "abc"})
    engine.send("once/run", {"jobId": "abc"})
    assert engine.wait_idle(5)
    engine.send("once/run", {"jobId": "abc"})
    assert engine.wait_idle(5)

    assert calls == ["once:abc"]


def test_sleep_resumes_from_checkpoint(engine, database):
    """A run re-delivered after its wake-up time does not sleep again"""
    finished = []

    @engine.function("sleeper", trigger="sleeper/run", idempotency_key=lambda e: e.data["id"])
    def sleeper(ctx):
        ctx.step.sleep("nap", 3600)
        finished.append(True)

    with database.session() as db:
        db.add(JobStep(
            run_id="sleeper:1",
            step_id="sleep:nap",
            output={"value": (utcnow() - timedelta(seconds=1)).isoformat()},
        ))
        db.commit()

    engine.start()
    engine.send("sleeper/run", {"id": "1"})
    assert engine.wait_idle(5)
    assert finished == [True]


def test_sleep_is_interrupted_by_shutdown(engine):
    started = threading.Event()
    finished = []

    @engine.function("long-sleeper", trigger="long/run")
    def long_sleeper(ctx):
        started.set()
        ctx.step.sleep("nap", 3600)
        finished.append(True)

    engine.start()
    engine.send("long/run", {})
    assert started.wait(5)

    begin = time.monotonic()
    engine.close(timeout=5)
    assert time.monotonic() - begin < 5
    assert finished == []


def test_interval_schedule(engine):
    ticks = []

    @engine.function("ticker", trigger="cron/tick")
    def ticker(ctx):
        ticks.append(ctx.event.ts)

    engine.every(0.05, "cron/tick")
    engine.start()
    deadline = time.monotonic() + 5
    while len(ticks) < 2 and time.monotonic() < deadline:
        time.sleep(0.02)

    assert len(ticks) >= 2


def test_backoff_keeps_concurrency_slot(engine):
    """A run waiting to retry still blocks later runs with the same key"""
    engine.retry_backoff = 0.3
    timeline = []
    failed = threading.Event()

    @engine.function(
        "per-user",
        trigger="per-user/run",
        concurrency_key=lambda e: e.data["userId"],
        max_attempts=2,
    )
    def per_user(ctx):
        name = ctx.event.data["name"]
        timeline.append(f"{name}:start")
        if name == "j1" and ctx.attempt == 1:
            timeline.append("j1:failed")
            failed.set()
            raise RuntimeError("transient")
        time.sleep(0.05)
        timeline.append(f"{name}:end")

    engine.start()
    engine.send("per-user/run", {"userId": "user-1", "name": "j1"})
    assert failed.wait(5)
    engine.send("per-user/run", {"userId": "user-1", "name": "j2"})
    assert engine.wait_idle(10)

    assert timeline == ["j1:start", "j1:failed", "j1:start", "j1:end", "j2:start", "j2:end"]


def test_sleeping_run_frees_its_worker(database):
    engine = JobEngine(database, workers=1, retry_backoff=0)
    sleeping = threading.Event()
    swept = threading.Event()

    @engine.function("napper", trigger="napper/run")
    def napper(ctx):
        sleeping.set()
        ctx.step.sleep("nap", 3600)

    @engine.function("sweep", trigger="cron/daily")
    def sweep(ctx):
        swept.set()

    try:
        engine.start()
        engine.send("napper/run", {})
        assert sleeping.wait(5)
        engine.send("cron/daily", {})
        assert swept.wait(2)
    finally:
        engine.close()


def test_sleep_resumes_without_using_an_attempt(engine):
    attempts = []

    @engine.function("short-nap", trigger="short-nap/run", max_attempts=1)
    def short_nap(ctx):
        attempts.append(ctx.attempt)
        ctx.step.sleep("nap", 0.2)
        attempts.append("woke")

    engine.start()
    engine.send("short-nap/run", {})
    assert engine.wait_idle(5)

    assert attempts[0] == 1
    assert attempts[-2:] == [1, "woke"]
