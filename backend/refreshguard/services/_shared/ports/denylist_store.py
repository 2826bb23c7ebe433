from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Protocol


class TokenDenylistStore(Protocol):
    """
    Abstraction for a denylist store for **access tokens**.

    Entries only need to live until the access token would expire anyway.
    Methods are expected to be idempotent.
    """

    def is_revoked(self, jti: str) -> bool: ...
    def revoke_jti(self, *, jti: str, expires_at: datetime) -> None: ...


class InMemoryDenylistStore(TokenDenylistStore):
    """Simple in-memory denylist for **access** tokens by JTI."""

    def __init__(self) -> None:
        self._revoked: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            expires_at = self._revoked.get(jti)
            if expires_at is None:
                return False
            if expires_at <= datetime.now(UTC):
                # The token is dead on its own; forget it.
                del self._revoked[jti]
                return False
            return True

    def revoke_jti(self, *, jti: str, expires_at: datetime) -> None:
        with self._lock:
            self._revoked[jti] = expires_at
