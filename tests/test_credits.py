from __future__ import annotations

import pytest

from pnode_watch.cache import TTLCache
from pnode_watch.errors import UpstreamError
from pnode_watch.services.credits import (
    CreditsService,
    calculate_credit_stats,
    is_reward_eligible,
    parse_credits_payload,
)
from tests.helpers import NOW


class FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def test_reward_threshold_is_eighty_percent_of_p95() -> None:
    values = [float(v) for v in range(50, 1000, 50)] + [1000.0]

    stats = calculate_credit_stats(values)

    assert stats.p95 == 1000.0
    assert stats.threshold80 == 800.0
    assert not is_reward_eligible(799, stats.threshold80)
    assert is_reward_eligible(800, stats.threshold80)


def test_stats_ignore_zero_credits_and_handle_empty() -> None:
    assert calculate_credit_stats([]).count == 0
    assert calculate_credit_stats([0, 0]).threshold80 == 0.0
    stats = calculate_credit_stats([0, 10, 30])
    assert stats.count == 2
    assert stats.average == 20
    assert stats.min == 10


def test_parse_credits_payload() -> None:
    payload = {
        "status": "success",
        "pods_credits": [
            {"pod_id": "pk-a", "credits": 12},
            {"pod_id": "pk-b", "credits": "bad"},
            {"credits": 5},
            "junk",
        ],
    }

    assert parse_credits_payload(payload) == {"pk-a": 12.0}
    with pytest.raises(UpstreamError):
        parse_credits_payload({"status": "error"})


async def test_credits_service_serves_stale_values_when_feed_fails() -> None:
    clock = FakeClock()
    responses = [{"status": "success", "pods_credits": [{"pod_id": "pk-a", "credits": 40}]}]

    def fetch(url: str, **kwargs):
        if not responses:
            raise UpstreamError("feed down")
        return responses.pop(0)

    service = CreditsService(
        "http://credits.test/api",
        TTLCache(60, clock=clock),
        fetch_json=fetch,
        now=lambda: NOW,
    )

    fresh = await service.get_credits()
    assert fresh.credits == {"pk-a": 40.0}
    assert not fresh.stale

    clock.value = 61
    stale = await service.get_credits()
    assert stale.credits == {"pk-a": 40.0}
    assert stale.stale


async def test_credits_service_without_url_is_disabled() -> None:
    service = CreditsService("", TTLCache(60))

    snapshot = await service.get_credits()

    assert snapshot.credits == {}
    assert snapshot.stale
