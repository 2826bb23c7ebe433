from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast

import redis  # type: ignore[import-untyped]

from refreshguard.infra.redis._support import unavailable_on_error
from refreshguard.services._shared.ports.rate_limiter import RateLimitDecision, RateLimiter


@dataclass(slots=True)
class RedisRateLimiter(RateLimiter):
    """
    Fixed-window limiter shared by every worker.

    The counter lives at ``rl:{key}``; the first hit of a window sets its
    expiry, so the key disappears when the window ends.

    :param r: A Redis client.
    :param limit: Attempts allowed per window.
    :param window: Window length in seconds.
    """

    r: redis.Redis
    limit: int
    window: int

    def __post_init__(self) -> None:
        if self.limit < 1 or self.window < 1:
            raise ValueError("limit and window must be positive")

    @staticmethod
    def _k(key: str) -> str:
        return f"rl:{key}"

    def _bump(self, key: str, amount: int) -> tuple[int, int]:
        """INCRBY + EXPIRE NX + TTL in one MULTI; return ``(count, ttl)``."""
        k = self._k(key)
        p: Any = self.r.pipeline(transaction=True)
        p.incrby(k, amount)
        p.expire(k, self.window, nx=True)
        p.ttl(k)
        count, _, ttl = p.execute()
        return cast(int, count), cast(int, ttl)

    @unavailable_on_error
    def consume(self, key: str) -> RateLimitDecision:
        count, ttl = self._bump(key, 1)
        retry_after = ttl if ttl > 0 else self.window
        return RateLimitDecision(
            allowed=count <= self.limit,
            remaining=max(self.limit - count, 0),
            retry_after=retry_after,
        )

    @unavailable_on_error
    def penalize(self, key: str, cost: int = 1) -> None:
        self._bump(key, cost)
