"""Per-application wiring of the refresh-token core and its collaborators.

Adapters are chosen from configuration once, in :func:`init_app`, and kept on
``app.extensions["refreshguard"]``. Services are cheap and request-scoped:
:meth:`TokenServices.refresh_tokens` and :meth:`TokenServices.auth` build a
new instance around the shared adapters for each call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import Flask, current_app

from refreshguard.core.config import TOKEN_STORE_BACKENDS
from refreshguard.services._shared.base import ServiceContext
from refreshguard.services._shared.ports import (
    InMemoryDenylistStore,
    InMemoryRateLimiter,
    InMemoryRefreshTokenStore,
    LoggingSecurityMonitor,
    RateLimiter,
    RefreshTokenStore,
    SecurityMonitor,
    TokenDenylistStore,
    TokenProvider,
)
from refreshguard.services.auth.dto import AuthTokenConfig
from refreshguard.services.auth.service import AuthService
from refreshguard.services.refresh_tokens.hasher import TokenHasher
from refreshguard.services.refresh_tokens.service import RefreshTokenService

log = logging.getLogger(__name__)

EXTENSION_KEY = "refreshguard"


@dataclass(slots=True)
class TokenServices:
    """Shared adapters plus factories for request-scoped services."""

    store: RefreshTokenStore
    monitor: SecurityMonitor
    limiter: RateLimiter
    denylist: TokenDenylistStore
    provider: TokenProvider
    hasher: TokenHasher
    default_ttl: timedelta
    extend_on_rotation: bool
    token_cfg: AuthTokenConfig

    def refresh_tokens(self, ctx: ServiceContext | None = None) -> RefreshTokenService:
        return RefreshTokenService(
            store=self.store,
            monitor=self.monitor,
            hasher=self.hasher,
            default_ttl=self.default_ttl,
            extend_on_rotation=self.extend_on_rotation,
            ctx=ctx,
        )

    def auth(self, ctx: ServiceContext | None = None) -> AuthService:
        return AuthService(
            tokens=self.refresh_tokens(ctx),
            token_provider=self.provider,
            rate_limiter=self.limiter,
            denylist_store=self.denylist,
            token_cfg=self.token_cfg,
            ctx=ctx,
        )


def _build_store(app: Flask) -> RefreshTokenStore:
    backend = app.config.get("TOKEN_STORE_BACKEND", "sqlalchemy")
    if backend not in TOKEN_STORE_BACKENDS:
        raise ValueError(
            f"TOKEN_STORE_BACKEND must be one of {sorted(TOKEN_STORE_BACKENDS)}, got {backend!r}"
        )
    if backend == "memory":
        return InMemoryRefreshTokenStore(timeout=float(app.config.get("TOKEN_STORE_TIMEOUT", 2.0)))
    if backend == "redis":
        from refreshguard.core.extensions import get_redis
        from refreshguard.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore

        if not app.config.get("REDIS_URL"):
            raise RuntimeError("TOKEN_STORE_BACKEND=redis requires REDIS_URL.")
        return RedisRefreshTokenStore(
            get_redis(),
            retention=timedelta(seconds=int(app.config.get("REFRESH_TOKEN_RETENTION", 86400))),
        )

    from refreshguard.infra.sqlalchemy.sqlalchemy_refresh_token_store import (
        SQLAlchemyRefreshTokenStore,
    )

    return SQLAlchemyRefreshTokenStore()


def build_services(app: Flask) -> TokenServices:
    """Choose adapters from ``app.config`` and bundle them."""
    from refreshguard.infra.jwt.flask_jwt_token_provider import JWTTokenProvider

    cfg = app.config
    limit = int(cfg.get("AUTH_REFRESH_RATE_LIMIT", 10))
    window = int(cfg.get("AUTH_REFRESH_RATE_WINDOW", 60))

    monitor: SecurityMonitor
    limiter: RateLimiter
    denylist: TokenDenylistStore
    if cfg.get("REDIS_URL"):
        from refreshguard.core.extensions import get_redis
        from refreshguard.infra.redis.redis_denylist_store import RedisTokenDenylistStore
        from refreshguard.infra.redis.redis_rate_limiter import RedisRateLimiter
        from refreshguard.infra.redis.redis_security_monitor import RedisSecurityMonitor

        r = get_redis()
        monitor = RedisSecurityMonitor(
            r, threshold=int(cfg.get("SECURITY_REFRESH_ALERT_THRESHOLD", 10))
        )
        limiter = RedisRateLimiter(r, limit=limit, window=window)
        denylist = RedisTokenDenylistStore(r)
    else:
        monitor = LoggingSecurityMonitor()
        limiter = InMemoryRateLimiter(limit=limit, window=window)
        denylist = InMemoryDenylistStore()

    refresh_ttl = timedelta(seconds=int(cfg.get("REFRESH_TOKEN_TTL", 604800)))
    return TokenServices(
        store=_build_store(app),
        monitor=monitor,
        limiter=limiter,
        denylist=denylist,
        provider=JWTTokenProvider(),
        hasher=TokenHasher(),
        default_ttl=refresh_ttl,
        extend_on_rotation=bool(cfg.get("REFRESH_EXTEND_ON_ROTATION", False)),
        token_cfg=AuthTokenConfig(
            access_expires=timedelta(seconds=int(cfg.get("ACCESS_TOKEN_TTL", 3600))),
            refresh_expires=refresh_ttl,
            refresh_token_bytes=int(cfg.get("REFRESH_TOKEN_BYTES", 48)),
            reuse_penalty=int(cfg.get("AUTH_REUSE_PENALTY", 5)),
        ),
    )


def init_app(app: Flask) -> None:
    """Build the adapters for ``app``; must run after :mod:`extensions`."""
    services = build_services(app)
    app.extensions[EXTENSION_KEY] = services
    log.info(
        "Token services ready (store=%s, limiter=%s)",
        type(services.store).__name__,
        type(services.limiter).__name__,
    )


def get_services() -> TokenServices:
    """Return the services bundle of the current application."""
    try:
        return current_app.extensions[EXTENSION_KEY]
    except KeyError as exc:
        raise RuntimeError("Token services are not initialized. Call init_app() first.") from exc
