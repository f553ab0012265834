"""Scheduler module — cron-driven reconcile and snapshot jobs for ``serve`` mode.

Jobs share one lock, so a snapshot never runs while a reconciliation is
writing, and two reconciliations from this process never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

from croniter import croniter

from .utils import now_utc

if TYPE_CHECKING:
    from .config import ScheduleConfig

Job = Callable[[], Awaitable[int]]


class Scheduler:
    """Runs unit-of-work jobs on cron schedules."""

    def __init__(
        self,
        config: ScheduleConfig,
        jobs: dict[str, Job],
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._jobs = jobs
        self._logger = logger or logging.getLogger("ledger.scheduler")
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []

    def schedules(self) -> dict[str, str]:
        """Job name → cron expression, for jobs that have both."""
        exprs = {
            "reconcile": self._config.reconcile_cron,
            "snapshot": self._config.snapshot_cron,
        }
        return {name: expr for name, expr in exprs.items() if expr and name in self._jobs}

    async def start(self) -> None:
        """Start one loop per scheduled job. Invalid cron expressions raise ValueError."""
        for name, expr in self.schedules().items():
            if not croniter.is_valid(expr):
                raise ValueError(f"Invalid cron expression for {name}: {expr!r}")
            self._tasks.append(asyncio.create_task(self._cron_loop(name, expr)))
            self._logger.info("Scheduled %s (%s)", name, expr)

    async def stop(self) -> None:
        """Cancel all tasks."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def run_job(self, name: str) -> int:
        """Run one job under the shared lock. Returns its exit code."""
        async with self._lock:
            self._logger.info("Running %s", name)
            try:
                code = await self._jobs[name]()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Scheduled %s failed", name)
                return 1
            if code:
                self._logger.warning("Scheduled %s finished with exit code %d", name, code)
            return code

    async def _cron_loop(self, name: str, expr: str) -> None:
        fire_at = croniter(expr, now_utc()).get_next(datetime)
        while True:
            delay = (fire_at - now_utc()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            await self.run_job(name)
            # Occurrences that passed while the job ran or waited are skipped
            fire_at = croniter(expr, max(now_utc(), fire_at)).get_next(datetime)
