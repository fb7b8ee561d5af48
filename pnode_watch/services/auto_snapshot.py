from __future__ import annotations

import time
from typing import Callable, Optional

from pnode_watch.clock import Now, as_utc, utcnow
from pnode_watch.config import Settings
from pnode_watch.logger import get_logger
from pnode_watch.schemas.history import AutoSnapshotRunOut, AutoSnapshotStatusOut
from pnode_watch.services.snapshots import SnapshotJob, get_latest_snapshot, job_result_out

_logger = get_logger("services.auto_snapshot")


class AutoSnapshotTrigger:
    """On-demand fallback for a missed cron: snapshot when the latest one is stale.

    The cooldown and busy flag only guard this process; the snapshot job's
    datastore lease and minimum-interval check cover other instances.
    """

    def __init__(
        self,
        job: SnapshotJob,
        *,
        stale_after_seconds: int = 3600,
        cooldown_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
        now: Now = utcnow,
    ) -> None:
        self._job = job
        self._stale_after = stale_after_seconds
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._now = now
        self._busy = False
        self._last_triggered_at: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings, job: SnapshotJob) -> "AutoSnapshotTrigger":
        return cls(
            job,
            stale_after_seconds=settings.auto_snapshot_stale_seconds,
            cooldown_seconds=settings.auto_snapshot_cooldown_seconds,
        )

    @property
    def busy(self) -> bool:
        return self._busy

    def cooldown_remaining(self) -> float:
        if self._last_triggered_at is None:
            return 0.0
        return max(0.0, self._cooldown - (self._clock() - self._last_triggered_at))

    async def status(self) -> AutoSnapshotStatusOut:
        async with self._job.sessionmaker() as session:
            latest = await get_latest_snapshot(session)
        if latest is None:
            return AutoSnapshotStatusOut(
                is_stale=True,
                is_check_in_progress=self._busy,
                cooldown_remaining_seconds=round(self.cooldown_remaining(), 1),
            )
        last_at = as_utc(latest.timestamp)
        age_seconds = (self._now() - last_at).total_seconds()
        return AutoSnapshotStatusOut(
            last_snapshot_at=last_at,
            last_snapshot_age_minutes=round(age_seconds / 60, 1),
            is_stale=age_seconds > self._stale_after,
            is_check_in_progress=self._busy,
            cooldown_remaining_seconds=round(self.cooldown_remaining(), 1),
        )

    async def check_and_trigger(self) -> AutoSnapshotRunOut:
        if self._busy:
            return AutoSnapshotRunOut(triggered=False, reason="in_progress", status=await self.status())
        if self.cooldown_remaining() > 0:
            return AutoSnapshotRunOut(triggered=False, reason="cooldown", status=await self.status())

        self._busy = True
        try:
            current = await self.status()
            if not current.is_stale:
                return AutoSnapshotRunOut(triggered=False, reason="fresh", status=current)

            self._last_triggered_at = self._clock()
            _logger.info(
                "auto_snapshot.trigger",
                "Latest snapshot is stale, running snapshot job",
                age_minutes=current.last_snapshot_age_minutes,
            )
            result = await self._job.run(trigger="auto")
        finally:
            self._busy = False

        return AutoSnapshotRunOut(
            triggered=True,
            reason="stale",
            status=await self.status(),
            result=job_result_out(result),
        )
