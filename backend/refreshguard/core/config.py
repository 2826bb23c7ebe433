"""Application settings with environment-based simple classes."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Final

from dotenv import load_dotenv

# Public selector env var (keep neutral name to avoid collisions)
ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'

TOKEN_STORE_BACKENDS: Final[frozenset[str]] = frozenset({"sqlalchemy", "redis", "memory"})


# Load .env when present (no-op otherwise)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    """Parse an integer from an environment variable.

    Blank values fall back to ``default``; malformed values raise
    :class:`ValueError` naming the variable.
    """
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {val!r}") from exc


def env_float(name: str, default: float) -> float:
    """Parse a float from an environment variable (same rules as :func:`env_int`)."""
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return float(val.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number, got {val!r}") from exc


def sql_engine_options(uri: str, timeout: float) -> dict[str, Any]:
    """Engine options bounding every token-store query by ``timeout`` seconds.

    ``pool_timeout`` only covers connection checkout. PostgreSQL additionally
    gets ``statement_timeout`` and ``lock_timeout`` so a compare-and-set
    ``UPDATE`` queued behind another transaction's row lock errors out
    instead of waiting forever; SQLite gets its busy timeout. Other dialects
    keep the checkout bound only.

    Parameters
    ----------
    uri: str
        SQLAlchemy database URL.
    timeout: float
        Upper bound in seconds.

    Returns
    -------
    dict[str, Any]
        Mapping for ``SQLALCHEMY_ENGINE_OPTIONS``.
    """
    scheme = uri.split(":", 1)[0].split("+", 1)[0].lower()
    if scheme == "sqlite":
        # Pools used for :memory: reject pool_timeout.
        return {"pool_pre_ping": True, "connect_args": {"timeout": timeout}}

    options: dict[str, Any] = {"pool_pre_ping": True, "pool_timeout": timeout}
    if scheme in {"postgresql", "postgres"}:
        ms = max(1, int(timeout * 1000))
        options["connect_args"] = {
            "options": f"-c statement_timeout={ms} -c lock_timeout={ms}"
        }
    return options


class BaseConfig:
    """Base configuration shared across environments.

    Attributes
    ----------
    API_BASE_PREFIX: str
        Root path for registering API blueprints.
    SECRET_KEY: str
        Flask secret. Defaults to a development-safe placeholder and should be
        overridden in production.
    JWT_SECRET_KEY: str
        Key used by ``flask-jwt-extended`` for signing access tokens.
    SQLALCHEMY_DATABASE_URI: str
        Database connection string consumed by SQLAlchemy.
    SQLALCHEMY_ENGINE_OPTIONS: dict
        Engine keyword arguments; ``pool_timeout`` bounds connection waits.
    USE_PROXYFIX: bool
        Honour ``X-Forwarded-*`` headers so provenance records the client IP.
    PROXY_FIX_HOPS: int
        Number of trusted reverse proxies in front of the app.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).
    REFRESH_TOKEN_TTL: int
        Lifetime of a refresh-token lineage in seconds (7 days).
    REFRESH_TOKEN_BYTES: int
        Entropy (bytes) of generated refresh-token plaintexts.
    REFRESH_EXTEND_ON_ROTATION: bool
        When ``True`` a rotated token gets a fresh ``REFRESH_TOKEN_TTL``;
        otherwise the successor inherits the predecessor's expiry.
    ACCESS_TOKEN_TTL: int
        Lifetime of signed access tokens in seconds.
    TOKEN_STORE_BACKEND: str
        Refresh-token store adapter: ``sqlalchemy``, ``redis`` or ``memory``.
    TOKEN_STORE_TIMEOUT: float
        Upper bound (seconds) on any single token-store operation.
    REFRESH_TOKEN_RETENTION: int
        Seconds a Redis record survives past its expiry so late replays are
        still detected as reuse.
    REDIS_URL: str | None
        Redis connection URL. Required by the ``redis`` store backend and by
        the Redis rate limiter, denylist and security monitor.
    AUTH_REFRESH_RATE_LIMIT: int
        Refresh attempts allowed per token per window.
    AUTH_REFRESH_RATE_WINDOW: int
        Rate-limit window length in seconds.
    AUTH_REUSE_PENALTY: int
        Extra limiter cost charged when reuse is detected.
    SECURITY_REFRESH_ALERT_THRESHOLD: int
        Refreshes per subject per window above which the monitor warns.

    Notes
    -----
    Values are primarily sourced from environment variables, enabling
    configuration without code changes.
    """

    API_BASE_PREFIX = "/api"

    # Secrets / security
    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_JWT")

    # DB
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Flask & JSON
    JSON_SORT_KEYS = False
    PROPAGATE_EXCEPTIONS = False
    USE_PROXYFIX = env_bool("USE_PROXYFIX", True)
    PROXY_FIX_HOPS = env_int("PROXY_FIX_HOPS", 1)

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Refresh tokens
    REFRESH_TOKEN_TTL = env_int("REFRESH_TOKEN_TTL", 604800)
    REFRESH_TOKEN_BYTES = env_int("REFRESH_TOKEN_BYTES", 48)
    REFRESH_EXTEND_ON_ROTATION = env_bool("REFRESH_EXTEND_ON_ROTATION", False)
    ACCESS_TOKEN_TTL = env_int("ACCESS_TOKEN_TTL", 3600)
    TOKEN_STORE_BACKEND = os.getenv("TOKEN_STORE_BACKEND", "sqlalchemy").strip().lower()
    TOKEN_STORE_TIMEOUT = env_float("TOKEN_STORE_TIMEOUT", 2.0)
    REFRESH_TOKEN_RETENTION = env_int("REFRESH_TOKEN_RETENTION", 86400)

    # Redis (optional)
    REDIS_URL = os.getenv("REDIS_URL") or None

    # Abuse controls
    AUTH_REFRESH_RATE_LIMIT = env_int("AUTH_REFRESH_RATE_LIMIT", 10)
    AUTH_REFRESH_RATE_WINDOW = env_int("AUTH_REFRESH_RATE_WINDOW", 60)
    AUTH_REUSE_PENALTY = env_int("AUTH_REUSE_PENALTY", 5)
    SECURITY_REFRESH_ALERT_THRESHOLD = env_int("SECURITY_REFRESH_ALERT_THRESHOLD", 10)

    # Flask built-ins
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    """Configuration tailored for local development.

    Notes
    -----
    Enables debug mode by default and honors ``SQLALCHEMY_ECHO`` for verbose
    SQL logging when requested.
    """

    DEBUG = env_bool("FLASK_DEBUG", True)
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    - Forces ``TESTING`` mode and disables debug logs.
    - Uses an in-memory SQLite database unless ``TEST_DATABASE_URL`` is set.
    - Uses the in-memory token store and no Redis so tests need no services.
    - Propagates exceptions so pytest can surface tracebacks directly.
    """

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}
    TOKEN_STORE_BACKEND = "memory"
    REDIS_URL = None
    PROPAGATE_EXCEPTIONS = True


class ProductionConfig(BaseConfig):
    """Configuration defaults for production deployments.

    Notes
    -----
    Keeps debug and SQL echoing disabled and bounds pool checkouts, lock
    waits and statements by ``TOKEN_STORE_TIMEOUT`` (see
    :func:`sql_engine_options`) so a saturated database fails closed quickly.
    """

    DEBUG = False
    SQLALCHEMY_ECHO = False
    PROPAGATE_EXCEPTIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = sql_engine_options(
        BaseConfig.SQLALCHEMY_DATABASE_URI, BaseConfig.TOKEN_STORE_TIMEOUT
    )


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``APP_ENV``.

    Returns
    -------
    type[BaseConfig]
        Class to pass to :meth:`flask.Config.from_object`.

    Notes
    -----
    Falls back to :class:`DevelopmentConfig` when ``APP_ENV`` is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)
