from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from pnode_watch.scheduler import SnapshotScheduler, next_fire_time


def test_next_fire_time_follows_cron_expression() -> None:
    after = datetime(2026, 10, 19, 12, 3, 30, tzinfo=timezone.utc)

    assert next_fire_time("*/5 * * * *", after) == datetime(2026, 10, 19, 12, 5, tzinfo=timezone.utc)
    assert next_fire_time("0 * * * *", after) == datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)


async def test_scheduler_start_and_stop() -> None:
    class IdleJob:
        async def run(self, *, trigger: str, force: bool = False):
            raise AssertionError("should not fire within the test")

    scheduler = SnapshotScheduler(IdleJob(), "0 0 1 1 *")

    await scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0)
    await scheduler.stop()

    assert not scheduler.running
