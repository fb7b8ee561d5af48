from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class _Entry(Generic[T]):
    value: T
    stored_at: float


class TTLCache(Generic[T]):
    """Single-value cache with an injected monotonic clock.

    The last stored value is retained after expiry so callers can fall back
    to stale data when a refresh fails.
    """

    def __init__(self, ttl_seconds: float, *, clock: Clock = time.monotonic) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entry: Optional[_Entry[T]] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self) -> Optional[T]:
        if self._entry is None or self.is_expired():
            return None
        return self._entry.value

    def get_stale(self) -> Optional[T]:
        return self._entry.value if self._entry is not None else None

    def set(self, value: T) -> None:
        self._entry = _Entry(value=value, stored_at=self._clock())

    def is_expired(self) -> bool:
        if self._entry is None:
            return True
        return self._clock() - self._entry.stored_at >= self._ttl

    def age_seconds(self) -> Optional[float]:
        if self._entry is None:
            return None
        return self._clock() - self._entry.stored_at

    def clear(self) -> None:
        self._entry = None
