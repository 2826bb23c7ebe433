"""
refreshguard.services._shared.ports
===================================

Collection of *ports* (hexagonal interfaces) that define the contracts
for refresh-token persistence and the collaborators of the token core.

These ports decouple the service layer from concrete implementations of
storage, rate limiting, security monitoring and access-token signing.

Modules
-------
- :mod:`refresh_token_store`:
    Defines :class:`~.RefreshTokenStore`, the atomic record store, plus
    :class:`~.InMemoryRefreshTokenStore`.

- :mod:`security_monitor`:
    Defines :class:`~.SecurityMonitor`, the fire-and-forget event sink, plus
    logging and recording implementations.

- :mod:`rate_limiter`:
    Defines :class:`~.RateLimiter` and :class:`~.RateLimitDecision`.

- :mod:`denylist_store`:
    Defines :class:`~.TokenDenylistStore`, the access-token blacklist.

- :mod:`token_provider`:
    Defines :class:`~.TokenProvider`, the access-token signer.

Design Notes
------------
All these ports follow the *Dependency Inversion Principle (DIP)* to keep
the service layer independent from implementation details.
Concrete adapters (Redis, SQLAlchemy, Flask-JWT-Extended) implement these
interfaces under ``refreshguard.infra``.
"""

from __future__ import annotations

from .denylist_store import InMemoryDenylistStore, TokenDenylistStore
from .rate_limiter import InMemoryRateLimiter, RateLimitDecision, RateLimiter
from .refresh_token_store import InMemoryRefreshTokenStore, RefreshTokenStore
from .security_monitor import (
    InMemorySecurityMonitor,
    LoggingSecurityMonitor,
    SecurityEvent,
    SecurityMonitor,
)
from .token_provider import StubTokenProvider, TokenProvider

__all__ = [
    "TokenProvider",
    "StubTokenProvider",
    "TokenDenylistStore",
    "InMemoryDenylistStore",
    "RefreshTokenStore",
    "InMemoryRefreshTokenStore",
    "RateLimiter",
    "RateLimitDecision",
    "InMemoryRateLimiter",
    "SecurityMonitor",
    "SecurityEvent",
    "LoggingSecurityMonitor",
    "InMemorySecurityMonitor",
]
