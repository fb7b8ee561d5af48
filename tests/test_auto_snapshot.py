from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from pnode_watch.services.auto_snapshot import AutoSnapshotTrigger
from pnode_watch.services.snapshots import SnapshotJobResult, insert_snapshot
from tests.helpers import NOW, make_node


@dataclass
class FakeJob:
    sessionmaker: object
    triggers: List[str] = field(default_factory=list)

    async def run(self, *, trigger: str, force: bool = False) -> SnapshotJobResult:
        self.triggers.append(trigger)
        return SnapshotJobResult(status="created", trigger=trigger, snapshot_id=99)


class FakeClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


async def test_stale_snapshot_triggers_once_then_cools_down(sessionmaker) -> None:
    job = FakeJob(sessionmaker)
    clock = FakeClock()
    trigger = AutoSnapshotTrigger(job, stale_after_seconds=3600, cooldown_seconds=300, clock=clock, now=lambda: NOW)

    first = await trigger.check_and_trigger()
    second = await trigger.check_and_trigger()
    clock.value += 301
    third = await trigger.check_and_trigger()

    assert (first.triggered, first.reason) == (True, "stale")
    assert first.result is not None and first.result.snapshot_id == 99
    assert (second.triggered, second.reason) == (False, "cooldown")
    assert third.triggered
    assert job.triggers == ["auto", "auto"]


async def test_fresh_snapshot_is_not_retriggered(sessionmaker, session) -> None:
    await insert_snapshot(session, [make_node("a")], timestamp=NOW - timedelta(minutes=10))
    job = FakeJob(sessionmaker)
    trigger = AutoSnapshotTrigger(job, now=lambda: NOW)

    status = await trigger.status()
    outcome = await trigger.check_and_trigger()

    assert not status.is_stale
    assert status.last_snapshot_age_minutes == 10.0
    assert (outcome.triggered, outcome.reason) == (False, "fresh")
    assert job.triggers == []
    assert not trigger.busy
