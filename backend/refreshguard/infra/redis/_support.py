"""Helpers shared by the Redis adapters."""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar

import redis  # type: ignore[import-untyped]

from refreshguard.services._shared.errors import StorageUnavailableError

F = TypeVar("F", bound=Callable[..., Any])


def decode(value: Any, default: str = "") -> str:
    """Decode a Redis reply (bytes or str) to ``str``."""
    if value is None:
        return default
    if isinstance(value, bytes | bytearray):
        return value.decode()
    return str(value)


def unavailable_on_error(func: F) -> F:
    """Surface any Redis failure (timeouts included) as ``StorageUnavailableError``."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        try:
            return func(*args, **kwargs)
        except redis.RedisError as exc:
            raise StorageUnavailableError(f"Redis error: {exc.__class__.__name__}") from exc

    return wrapper  # type: ignore[return-value]
