from __future__ import annotations

from datetime import UTC, datetime
from typing import cast

import redis  # type: ignore[import-untyped]

from refreshguard.infra.redis._support import unavailable_on_error
from refreshguard.services._shared.ports.denylist_store import TokenDenylistStore


class RedisTokenDenylistStore(TokenDenylistStore):
    """
    Minimal denylist for **access tokens** by jti.

    Each entry is a marker key whose TTL matches the token's remaining life,
    so the list never outgrows the set of still-valid access tokens.
    """

    def __init__(self, r: redis.Redis):
        self.r = r

    @staticmethod
    def _k(jti: str) -> str:
        return f"deny:at:{jti}"

    @unavailable_on_error
    def is_revoked(self, jti: str) -> bool:
        return cast(int, self.r.exists(self._k(jti))) == 1

    @unavailable_on_error
    def revoke_jti(self, *, jti: str, expires_at: datetime) -> None:
        now = datetime.now(UTC).timestamp()
        ttl = max(1, int(expires_at.timestamp() - now))
        # idempotent marker
        self.r.set(self._k(jti), "1", ex=ttl)
