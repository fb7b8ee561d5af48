from __future__ import annotations

from pnode_watch.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


def test_value_expires_after_ttl_but_stays_available_as_stale() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(30, clock=clock)

    assert cache.get() is None
    cache.set("nodes")
    clock.value += 29
    assert cache.get() == "nodes"
    assert cache.age_seconds() == 29

    clock.value += 1
    assert cache.is_expired()
    assert cache.get() is None
    assert cache.get_stale() == "nodes"


def test_clear_drops_stale_value() -> None:
    cache: TTLCache[int] = TTLCache(5)
    cache.set(1)
    cache.clear()

    assert cache.get_stale() is None
    assert cache.age_seconds() is None
