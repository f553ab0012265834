"""Tests for the cron job scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from betbot_ledger.config import ScheduleConfig
from betbot_ledger.scheduler import Scheduler


async def _noop() -> int:
    return 0


async def test_schedules_only_jobs_with_expression():
    jobs = {"reconcile": _noop, "snapshot": _noop}
    sched = Scheduler(ScheduleConfig(reconcile_cron="*/5 * * * *", snapshot_cron=""), jobs)
    assert sched.schedules() == {"reconcile": "*/5 * * * *"}


async def test_schedules_skip_missing_jobs():
    sched = Scheduler(ScheduleConfig(), {"snapshot": _noop})
    assert list(sched.schedules()) == ["snapshot"]


async def test_invalid_cron_raises():
    sched = Scheduler(
        ScheduleConfig(reconcile_cron="every hour"), {"reconcile": _noop}
    )
    with pytest.raises(ValueError):
        await sched.start()
    await sched.stop()


async def test_start_and_stop_cancels_loops():
    jobs = {"reconcile": _noop, "snapshot": _noop}
    sched = Scheduler(ScheduleConfig(), jobs)
    await sched.start()
    assert len(sched._tasks) == 2
    await sched.stop()
    assert sched._tasks == []


async def test_run_job_returns_exit_code():
    async def job() -> int:
        return 3

    sched = Scheduler(ScheduleConfig(), {"reconcile": job})
    assert await sched.run_job("reconcile") == 3


async def test_failing_job_is_logged_not_raised(caplog):
    async def job() -> int:
        raise RuntimeError("boom")

    sched = Scheduler(ScheduleConfig(), {"snapshot": job})
    assert await sched.run_job("snapshot") == 1
    assert "Scheduled snapshot failed" in caplog.text


async def test_jobs_never_overlap():
    """Snapshot waits for a running reconcile to finish."""
    events: list[str] = []
    release = asyncio.Event()

    async def reconcile() -> int:
        events.append("reconcile-start")
        await release.wait()
        events.append("reconcile-end")
        return 0

    async def snapshot() -> int:
        events.append("snapshot")
        return 0

    sched = Scheduler(ScheduleConfig(), {"reconcile": reconcile, "snapshot": snapshot})
    first = asyncio.create_task(sched.run_job("reconcile"))
    await asyncio.sleep(0)
    second = asyncio.create_task(sched.run_job("snapshot"))
    await asyncio.sleep(0.01)
    assert events == ["reconcile-start"]

    release.set()
    assert await asyncio.gather(first, second) == [0, 0]
    assert events == ["reconcile-start", "reconcile-end", "snapshot"]


class _FakeClock:
    """Drives ``now_utc`` and ``asyncio.sleep`` inside the scheduler module."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.sleeps: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += timedelta(seconds=delay)


def _run_cron(monkeypatch, clock: _FakeClock, job, expr: str = "* * * * *"):
    monkeypatch.setattr("betbot_ledger.scheduler.now_utc", lambda: clock.now)
    monkeypatch.setattr("betbot_ledger.scheduler.asyncio.sleep", clock.sleep)
    sched = Scheduler(ScheduleConfig(reconcile_cron=expr), {"reconcile": job})
    return sched._cron_loop("reconcile", expr)


async def test_overrunning_job_skips_missed_occurrences(monkeypatch):
    """A 30-minute run is followed by the next minute boundary, not a burst of catch-up runs."""
    clock = _FakeClock(datetime(2026, 1, 1, 0, 0, 30, tzinfo=timezone.utc))
    runs: list[datetime] = []

    async def job() -> int:
        runs.append(clock.now)
        if len(runs) == 1:
            clock.now += timedelta(minutes=30)
        if len(runs) == 4:
            raise asyncio.CancelledError
        return 0

    with pytest.raises(asyncio.CancelledError):
        await _run_cron(monkeypatch, clock, job)

    assert runs == [
        datetime(2026, 1, 1, 0, 1, tzinfo=timezone.utc),
        datetime(2026, 1, 1, 0, 32, tzinfo=timezone.utc),
        datetime(2026, 1, 1, 0, 33, tzinfo=timezone.utc),
        datetime(2026, 1, 1, 0, 34, tzinfo=timezone.utc),
    ]
    assert clock.sleeps == [30.0, 60.0, 60.0, 60.0]


async def test_instant_job_fires_once_per_occurrence(monkeypatch):
    clock = _FakeClock(datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc))
    runs: list[datetime] = []

    async def job() -> int:
        runs.append(clock.now)
        if len(runs) == 3:
            raise asyncio.CancelledError
        return 0

    with pytest.raises(asyncio.CancelledError):
        await _run_cron(monkeypatch, clock, job, expr="*/5 * * * *")

    assert [r.minute for r in runs] == [5, 10, 15]
    assert all(delay > 0 for delay in clock.sleeps)
