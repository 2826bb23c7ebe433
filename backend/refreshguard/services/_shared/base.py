# refreshguard/services/_shared/base.py
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from refreshguard.core import errors as api_errors
from refreshguard.services._shared.errors import (
    AuthenticationFailedError,
    ConflictError,
    RateLimitedError,
    ServiceError,
    StorageUnavailableError,
    TokenError,
)

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(UTC)


@dataclass(slots=True)
class ServiceContext:
    """
    Carry cross-cutting request-scoped data (provenance, request ids).

    :param request_id: Correlation id for logging/tracing.
    :param ip_address: Client IP as seen after proxy normalisation.
    :param user_agent: Client ``User-Agent`` header.
    """

    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Hold the request context and an injectable clock.
    * Centralize error translation from service errors to API errors.

    Notes
    -----
    - Services never touch sessions or Redis clients directly; they talk to
      ports, and adapters own transactions.
    """

    def __init__(self, *, ctx: ServiceContext | None = None, clock: Clock | None = None) -> None:
        """
        Initialize the base service.

        :param ctx: Optional request-scoped context.
        :type ctx: ServiceContext | None
        :param clock: Callable returning aware UTC ``datetime``; defaults to
            :func:`utc_now`. Tests inject frozen clocks here.
        """
        self.ctx = ctx or ServiceContext()
        self._clock = clock or utc_now

    def now_utc(self) -> datetime:
        return self._clock()

    # -------------------------- Error handling ------------------------------

    def translate_exceptions(self, exc: Exception) -> Exception:
        """
        Map domain/service-level errors to API-level (HTTP) errors.

        Every token-level reason is reported with the same 401 body so that
        clients cannot distinguish unknown, expired, revoked or reused tokens.

        :param exc: Exception raised within the service.
        :type exc: Exception
        :returns: Translated exception ready to be re-raised.
        :rtype: Exception
        """
        if isinstance(exc, AuthenticationFailedError | TokenError):
            # → 401 Unauthorized
            return api_errors.Unauthorized(str(AuthenticationFailedError()))

        if isinstance(exc, RateLimitedError):
            # → 429 Too Many Requests
            return api_errors.TooManyRequests(str(exc), retry_after=exc.retry_after)

        if isinstance(exc, StorageUnavailableError):
            # → 503 Service Unavailable (retryable)
            return api_errors.ServiceUnavailable()

        if isinstance(exc, ConflictError):
            # → 409 Conflict
            return api_errors.Conflict(str(exc))

        # Any other ServiceError subclass → 400 Bad Request
        if isinstance(exc, ServiceError):
            return api_errors.APIError(
                message=str(exc),
                status_code=400,
                code="bad_request",
            )

        # Fallback: return untouched (will bubble up to Flask handler)
        return exc
