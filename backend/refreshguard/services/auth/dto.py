# refreshguard/services/auth/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

# ---------------------------- Input DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class IssueIn:
    """
    Input DTO for issuing a first token pair to an already authenticated subject.

    :param subject: Owner reference handed over by the login flow.
    :type subject: str
    :param ip_address: Client IP (provenance).
    :param user_agent: Client user agent (provenance).
    """

    subject: str
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class RefreshIn:
    """
    Input DTO for token refresh.

    :param refresh_token: Opaque refresh token plaintext.
    :type refresh_token: str
    :param ip_address: Client IP (provenance).
    :param user_agent: Client user agent (provenance).
    """

    refresh_token: str
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class LogoutIn:
    """
    Input DTO for logout.

    :param refresh_token: Refresh token whose lineage is revoked.
    :type refresh_token: str
    :param access_token: Optional access JWT to denylist until it expires.
    :type access_token: str | None
    :param all_sessions: If True, revoke every refresh token of the subject.
    :type all_sessions: bool
    """

    refresh_token: str
    access_token: str | None = None
    all_sessions: bool = False


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPairOut:
    """
    Output DTO with access and refresh tokens.

    :param access_token: Signed access JWT.
    :param refresh_token: New opaque refresh token (shown once).
    :param expires_in: Access token lifetime in seconds.
    :param token_type: Always ``"Bearer"``.
    """

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


# ------------------------ Config DTO ------------------------------------- #


@dataclass(frozen=True, slots=True)
class AuthTokenConfig:
    """
    Token emission configuration.

    :param access_expires: Access token lifetime.
    :type access_expires: timedelta
    :param refresh_expires: Refresh lineage lifetime.
    :type refresh_expires: timedelta
    :param refresh_token_bytes: Entropy of generated refresh plaintexts.
    :type refresh_token_bytes: int
    :param reuse_penalty: Extra limiter cost charged on detected reuse.
    :type reuse_penalty: int
    """

    access_expires: timedelta = timedelta(hours=1)
    refresh_expires: timedelta = timedelta(days=7)
    refresh_token_bytes: int = 48
    reuse_penalty: int = 5
