"""
Retention Sweeper and periodic job runner.

The sweeper removes quota records past the retention window. The runner
executes registered jobs on a fixed interval inside the application's event
loop; a failing job is logged and retried on the next tick.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, timedelta

from structlog import get_logger

from manabee.observability import metrics
from manabee.storage import Store

logger = get_logger(__name__)

ScheduledJob = Callable[[], Awaitable[object]]


class RetentionSweeper:
    """Deletes QuotaRecords older than the retention window."""

    def __init__(self, store: Store, retention_days: int = 7) -> None:
        self.store = store
        self.retention_days = retention_days

    async def sweep(self, today: date | None = None) -> int:
        """Delete every quota record with day < today - retention_days."""
        today = today or datetime.now(UTC).date()
        cutoff = today - timedelta(days=self.retention_days)

        deleted = await self.store.delete_quota_before(cutoff)
        metrics.quota_records_deleted_total.inc(deleted)
        logger.info("quota_records_swept", cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted


class PeriodicRunner:
    """Runs named async jobs every ``interval_seconds`` until stopped."""

    def __init__(self, interval_seconds: float) -> None:
        self.interval_seconds = interval_seconds
        self._jobs: list[tuple[str, ScheduledJob]] = []
        self._task: asyncio.Task[None] | None = None

    def register(self, name: str, job: ScheduledJob) -> None:
        self._jobs.append((name, job))

    async def run_once(self) -> dict[str, bool]:
        """Run every registered job once; returns success per job name."""
        results: dict[str, bool] = {}
        for name, job in self._jobs:
            try:
                await job()
            except Exception as e:
                logger.error("scheduled_job_failed", job=name, error=str(e))
                results[name] = False
            else:
                results[name] = True
            metrics.record_scheduled_run(name, results[name])
        return results

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="manabee-periodic-runner")
            logger.info(
                "periodic_runner_started",
                jobs=[name for name, _ in self._jobs],
                interval_seconds=self.interval_seconds,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("periodic_runner_stopped")
