from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from croniter import croniter

from pnode_watch.clock import Now, utcnow
from pnode_watch.logger import get_logger
from pnode_watch.services.snapshots import SnapshotJob

_logger = get_logger("scheduler")


def next_fire_time(expression: str, after: datetime) -> datetime:
    return croniter(expression, after).get_next(datetime)


class SnapshotScheduler:
    """Runs the snapshot job at each fire time of a cron expression until stopped."""

    def __init__(self, job: SnapshotJob, expression: str, *, now: Now = utcnow) -> None:
        self._job = job
        self._expression = expression
        self._now = now
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop())
        _logger.info(
            "scheduler.start",
            "Started snapshot scheduler",
            cron=self._expression,
            next_run=next_fire_time(self._expression, self._now()).isoformat(),
        )

    async def stop(self) -> None:
        self._stop.set()
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        _logger.info("scheduler.stop", "Stopped snapshot scheduler")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            fire_at = next_fire_time(self._expression, self._now())
            delay = max(0.0, (fire_at - self._now()).total_seconds())
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
                return
            except TimeoutError:
                pass

            try:
                result = await self._job.run(trigger="schedule")
                _logger.info(
                    "scheduler.tick",
                    "Scheduled snapshot finished",
                    status=result.status,
                    reason=result.reason,
                    snapshot_id=result.snapshot_id,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                _logger.exception(
                    "scheduler.error",
                    "Scheduled snapshot failed",
                    error_type=type(exc).__name__,
                )
