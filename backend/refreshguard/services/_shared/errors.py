"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and should never import or depend
on Flask or HTTP. They serve as stable contracts between store adapters,
domain logic, and application services.

The translation to HTTP responses (RFC 7807) is handled by
``refreshguard/core/errors.py`` via ``BaseService.translate_exceptions()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord


# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from stores or domain logic.
    - The API layer or BaseService will later translate them to APIError.
    """

    pass


# --------------------------------------------------------------------------- #
# Specific domain-level errors
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class ConflictError(ServiceError):
    """
    Raised when a unique constraint or business rule conflict occurs.

    :param entity: Entity name (e.g., "RefreshToken").
    :type entity: str
    :param detail: Short human-readable explanation.
    :type detail: str
    """

    entity: str
    detail: str

    def __str__(self) -> str:  # pragma: no cover
        return f"Conflict on {self.entity}: {self.detail}"


class StorageUnavailableError(ServiceError):
    """
    Raised when the token store fails or does not answer within its timeout.

    This is the only retryable failure. Callers must treat it as
    "not verified" and never as "valid".
    """

    def __init__(self, message: str = "Token store unavailable") -> None:
        super().__init__(message)


class AuthenticationFailedError(ServiceError):
    """
    Single outward-facing failure for refresh attempts.

    Every token-level reason (unknown, expired, revoked, reused) collapses
    into this error so clients cannot probe token state.
    """

    def __init__(self, message: str = "Invalid or expired refresh token") -> None:
        super().__init__(message)


class RateLimitedError(ServiceError):
    """
    Raised when the rate limiter refuses an attempt.

    :param retry_after: Seconds until the current window resets.
    :type retry_after: int
    """

    def __init__(self, retry_after: int, message: str = "Too many refresh attempts") -> None:
        super().__init__(message)
        self.retry_after = retry_after


# --------------------------------------------------------------------------- #
# Refresh-token verification outcomes
# --------------------------------------------------------------------------- #


class TokenError(ServiceError):
    """
    Base class for refresh-token verification failures.

    :param message: Optional override of the class default message.
    :param record: The record involved, when one was found.
    """

    default_message = "Refresh token rejected"

    def __init__(self, message: str | None = None, *, record: RefreshTokenRecord | None = None) -> None:
        super().__init__(message or self.default_message)
        self.record = record


class TokenNotFoundError(TokenError):
    """No record matches the presented token."""

    default_message = "Refresh token not found"


class TokenExpiredError(TokenError):
    """The record's absolute expiry has passed."""

    default_message = "Refresh token expired"


class TokenRevokedError(TokenError):
    """The record was revoked (logout or chain revocation)."""

    default_message = "Refresh token revoked"


class TokenReusedError(TokenError):
    """An already-rotated token was presented again (possible theft)."""

    default_message = "Refresh token reuse detected"
