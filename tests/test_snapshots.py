from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select

from pnode_watch.cache import TTLCache
from pnode_watch.models import AlertSubscription, NetworkSnapshot, NodeSnapshot
from pnode_watch.services.alerts import AlertPolicy
from pnode_watch.services.credits import CreditsService
from pnode_watch.services.normalizer import StatusPolicy
from pnode_watch.services.poller import PodPoller
from pnode_watch.services.snapshots import (
    SnapshotJob,
    SnapshotJobConfig,
    acquire_lease,
    get_latest_snapshot,
    insert_snapshot,
    job_result_out,
    prune_old_snapshots,
    release_lease,
)
from tests.helpers import NOW, FakeNotifier, make_node, raw_pod, rpc_fetcher


def _job(sessionmaker, fetch, notifier=None, now=NOW) -> SnapshotJob:
    return SnapshotJob(
        sessionmaker,
        poller=PodPoller(["seed-1", "seed-2"], fetch_json=fetch),
        credits_service=CreditsService("", TTLCache(60)),
        notifier=notifier or FakeNotifier(),
        status_policy=StatusPolicy(),
        alert_policy=AlertPolicy(),
        config=SnapshotJobConfig(base_url="https://watch.test"),
        now=lambda: now,
    )


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def test_lease_is_exclusive_until_released(session) -> None:
    assert await acquire_lease(session, "snapshot", holder="a", ttl_seconds=300, now=NOW)
    assert not await acquire_lease(session, "snapshot", holder="b", ttl_seconds=300, now=NOW)

    await release_lease(session, "snapshot", holder="a")

    assert await acquire_lease(session, "snapshot", holder="b", ttl_seconds=300, now=NOW)


async def test_expired_lease_can_be_taken_over(session) -> None:
    assert await acquire_lease(session, "snapshot", holder="a", ttl_seconds=60, now=NOW)

    assert await acquire_lease(session, "snapshot", holder="b", ttl_seconds=60, now=NOW + timedelta(seconds=61))


async def test_job_writes_snapshot_and_guards_minimum_interval(sessionmaker, session) -> None:
    fetch = rpc_fetcher([raw_pod("pk-a"), raw_pod("pk-b", uptime=3600)])
    job = _job(sessionmaker, fetch)

    created = await job.run(trigger="cron")
    repeated = await job.run(trigger="cron")
    forced = await job.run(trigger="cron", force=True)

    assert created.status == "created"
    assert created.node_count == 2
    assert (repeated.status, repeated.reason) == ("skipped", "too_soon")
    assert forced.status == "created"
    assert await _count(session, NetworkSnapshot) == 2
    assert await _count(session, NodeSnapshot) == 4
    assert job_result_out(created).snapshot_id == created.snapshot_id


async def test_failed_poll_writes_nothing(sessionmaker, session) -> None:
    job = _job(sessionmaker, rpc_fetcher([], failing={"seed-1", "seed-2"}))

    result = await job.run(trigger="schedule")

    assert result.status == "failed"
    assert await _count(session, NetworkSnapshot) == 0


async def test_job_alerts_on_transition_between_runs(sessionmaker, session) -> None:
    session.add(AlertSubscription(email="ops@example.com", node_ids=["pk-a"], verified=True, alert_score_drop=False))
    await session.commit()
    notifier = FakeNotifier()

    await _job(sessionmaker, rpc_fetcher([raw_pod("pk-a")]), notifier, now=NOW).run(trigger="cron")
    went_dark = raw_pod("pk-a", last_seen_timestamp=NOW.timestamp() - 3600)
    later = NOW + timedelta(minutes=5)
    result = await _job(sessionmaker, rpc_fetcher([went_dark]), notifier, now=later).run(trigger="cron")

    assert result.status == "created"
    assert result.alerts.sent == 1
    assert [email.subject for email in notifier.emails] == ["pNode Watch: Node Offline"]


async def test_prune_removes_snapshots_past_retention(session) -> None:
    await insert_snapshot(session, [make_node("a")], timestamp=NOW - timedelta(days=40))
    await insert_snapshot(session, [make_node("a")], timestamp=NOW - timedelta(days=1))

    deleted = await prune_old_snapshots(session, retention_days=30, now=NOW)

    assert deleted == 1
    assert await _count(session, NodeSnapshot) == 1
    latest = await get_latest_snapshot(session)
    assert latest is not None and latest.total_nodes == 1
