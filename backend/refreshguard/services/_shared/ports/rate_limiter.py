from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """
    Outcome of a rate-limit check.

    :ivar allowed: Whether the attempt may proceed.
    :ivar remaining: Attempts left in the current window (never negative).
    :ivar retry_after: Seconds until the window resets.
    """

    allowed: bool
    remaining: int
    retry_after: int


class RateLimiter(Protocol):
    """
    Fixed-window limiter keyed by an opaque string.

    ``consume`` counts one attempt and reports whether it is within budget;
    ``penalize`` charges extra cost to a key (e.g. after detected reuse).
    """

    def consume(self, key: str) -> RateLimitDecision: ...

    def penalize(self, key: str, cost: int = 1) -> None: ...


class InMemoryRateLimiter(RateLimiter):
    """Process-local fixed-window limiter used in unit tests and the memory backend."""

    def __init__(
        self,
        *,
        limit: int,
        window: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1 or window < 1:
            raise ValueError("limit and window must be positive")
        self.limit = limit
        self.window = window
        self._clock = clock
        self._buckets: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def _bucket(self, key: str, now: float) -> tuple[float, int]:
        started, count = self._buckets.get(key, (now, 0))
        if now - started >= self.window:
            started, count = now, 0
        return started, count

    def consume(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            started, count = self._bucket(key, now)
            count += 1
            self._buckets[key] = (started, count)
            retry_after = max(int(started + self.window - now), 1)
            return RateLimitDecision(
                allowed=count <= self.limit,
                remaining=max(self.limit - count, 0),
                retry_after=retry_after,
            )

    def penalize(self, key: str, cost: int = 1) -> None:
        with self._lock:
            now = self._clock()
            started, count = self._bucket(key, now)
            self._buckets[key] = (started, count + cost)
