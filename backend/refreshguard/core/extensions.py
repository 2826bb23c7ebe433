"""Global Flask extension instances and initialization helpers."""

from __future__ import annotations

import logging

import redis  # type: ignore[import-untyped]
from flask import Flask
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from redis.exceptions import RedisError  # type: ignore[import-untyped]
from sqlalchemy import MetaData

# Global naming convention for all constraints
# Useful tokens:
#   %(table_name)s, %(column_0_name)s, %(referred_table_name)s, %(referred_table_name)s, etc.
#   For composite keys use _col_%(column_0_name)s_%(column_1_name)s... or a hash.
convention = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

log = logging.getLogger(__name__)

# Global singletons (import-safe)
db: SQLAlchemy = SQLAlchemy(session_options={"autoflush": False}, metadata=metadata)
migrate = Migrate(render_as_batch=True)
jwt = JWTManager()
redis_client: redis.Redis | None = None


def init_app(app: Flask) -> None:
    """Initialize SQLAlchemy, migrations, JWT and the optional Redis client.

    Parameters
    ----------
    app: flask.Flask
        Application used to bind extension instances. This call imports the
        :mod:`refreshguard.models` package to ensure SQLAlchemy metadata is
        ready for migrations.

    Notes
    -----
    The Redis client is created only when ``REDIS_URL`` is configured. Its
    socket timeouts are bounded by ``TOKEN_STORE_TIMEOUT`` so a stalled
    server surfaces as an error instead of a hanging refresh.
    """
    db.init_app(app)

    # Ensure models are imported so Alembic sees metadata
    from refreshguard import models as _models  # noqa: F401

    migrate.init_app(app, db)
    jwt.init_app(app)
    _register_jwt_callbacks()

    global redis_client
    redis_url = app.config.get("REDIS_URL")
    if not redis_url:
        redis_client = None
        app.extensions.pop("redis_client", None)
        return

    timeout = float(app.config.get("TOKEN_STORE_TIMEOUT", 2.0))
    redis_client = redis.Redis.from_url(
        redis_url,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )
    try:
        redis_client.ping()
    except RedisError as exc:
        raise RuntimeError(f"Failed to connect to Redis at {redis_url!r}") from exc
    app.extensions["redis_client"] = redis_client


def _register_jwt_callbacks() -> None:
    """Consult the access-token denylist and render JWT failures as problem+json."""
    from refreshguard.core.errors import problem_payload, problem_response

    def _unauthorized(detail: str):
        return problem_response(problem_payload(status=401, code="unauthorized", detail=detail))

    jwt.unauthorized_loader(lambda reason: _unauthorized("Missing access token"))
    jwt.invalid_token_loader(lambda reason: _unauthorized("Invalid access token"))
    jwt.expired_token_loader(lambda header, payload: _unauthorized("Access token has expired"))
    jwt.revoked_token_loader(lambda header, payload: _unauthorized("Access token has been revoked"))

    @jwt.token_in_blocklist_loader
    def _is_access_token_revoked(_jwt_header: dict, jwt_payload: dict) -> bool:
        from refreshguard.core.container import get_services
        from refreshguard.services._shared.errors import StorageUnavailableError

        jti = jwt_payload.get("jti")
        if not jti:
            return True
        try:
            return get_services().denylist.is_revoked(jti)
        except StorageUnavailableError:
            # Denylist unreachable: treat the token as revoked.
            log.warning("Access-token denylist unavailable; rejecting token")
            return True


def get_redis() -> redis.Redis:
    """Return the initialized Redis client."""
    if redis_client is None:
        raise RuntimeError("Redis client is not initialized. Call init_app() first.")
    return redis_client
