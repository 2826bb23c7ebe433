# refreshguard/services/auth/service.py
from __future__ import annotations

import logging
import secrets

from refreshguard.services._shared.base import BaseService, Clock, ServiceContext
from refreshguard.services._shared.errors import (
    AuthenticationFailedError,
    RateLimitedError,
    TokenError,
    TokenReusedError,
)
from refreshguard.services._shared.ports.denylist_store import TokenDenylistStore
from refreshguard.services._shared.ports.rate_limiter import RateLimiter
from refreshguard.services._shared.ports.token_provider import TokenProvider
from refreshguard.services.auth.dto import (
    AuthTokenConfig,
    IssueIn,
    LogoutIn,
    RefreshIn,
    TokenPairOut,
)
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord
from refreshguard.services.refresh_tokens.service import RefreshTokenService

log = logging.getLogger(__name__)


class AuthService(BaseService):
    """
    Refresh-token lifecycle use cases (issue / refresh / logout).

    This service gates refresh attempts through a :class:`RateLimiter`,
    delegates verification and rotation to :class:`RefreshTokenService`,
    and mints access tokens through a pluggable :class:`TokenProvider`.

    Security
    --------
    - Every token-level failure leaves as :class:`AuthenticationFailedError`;
      the precise reason only reaches the security monitor.
    - :class:`StorageUnavailableError` propagates untouched (retryable).
    - Detected reuse is charged to the limiter as an extra penalty.
    """

    def __init__(
        self,
        *,
        tokens: RefreshTokenService,
        token_provider: TokenProvider,
        rate_limiter: RateLimiter,
        denylist_store: TokenDenylistStore,
        token_cfg: AuthTokenConfig | None = None,
        ctx: ServiceContext | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the service with its dependencies.

        :param tokens: Refresh-token core facade.
        :param token_provider: Adapter for signing access JWTs.
        :param rate_limiter: Gate consulted before every refresh.
        :param denylist_store: Denylist for access tokens (JTI-based).
        :param token_cfg: Lifetimes and entropy configuration.
        """
        super().__init__(ctx=ctx, clock=clock)
        self.tokens = tokens
        self.access_tokens = token_provider
        self.limiter = rate_limiter
        self.denylist = denylist_store
        self.cfg = token_cfg or AuthTokenConfig()

    # ------------------------------------------------------------------ #
    # Issue
    # ------------------------------------------------------------------ #

    def issue(self, dto: IssueIn) -> TokenPairOut:
        """
        Start a new lineage for an authenticated subject.

        Credential checks happen upstream; this only mints the pair.
        """
        plaintext = self._new_plaintext()
        record = self.tokens.create_token(
            dto.subject,
            plaintext,
            ttl=self.cfg.refresh_expires,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
        )
        return self._pair_for(record, plaintext, fresh=True)

    # ------------------------------------------------------------------ #
    # Refresh with atomic rotation
    # ------------------------------------------------------------------ #

    def refresh(self, dto: RefreshIn) -> TokenPairOut:
        """
        Rotate a refresh token and emit a new token pair.

        :raises RateLimitedError: when the token's attempt budget is spent.
        :raises AuthenticationFailedError: for any invalid token.
        """
        key = self._limiter_key(dto.refresh_token)
        decision = self.limiter.consume(key)
        if not decision.allowed:
            log.warning(
                "Refresh rate limit exceeded",
                extra={"event_type": "security.rate_limit_exceeded", "ip_address": dto.ip_address},
            )
            raise RateLimitedError(decision.retry_after)

        new_plaintext = self._new_plaintext()
        try:
            successor = self.tokens.refresh(
                dto.refresh_token,
                new_plaintext,
                ip_address=dto.ip_address,
                user_agent=dto.user_agent,
            )
        except TokenReusedError:
            self.limiter.penalize(key, self.cfg.reuse_penalty)
            raise AuthenticationFailedError() from None
        except TokenError:
            raise AuthenticationFailedError() from None

        return self._pair_for(successor, new_plaintext, fresh=False)

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def logout(self, dto: LogoutIn) -> int:
        """
        Revoke the lineage of ``dto.refresh_token`` (or every lineage of its
        subject) and denylist the accompanying access token.

        :returns: Number of refresh tokens newly revoked.
        :raises AuthenticationFailedError: unknown refresh token, or an access
            token that does not belong to the same subject.
        """
        record = self.tokens.find_by_plaintext_token(dto.refresh_token)
        if record is None:
            raise AuthenticationFailedError()

        if dto.access_token:
            self._denylist_access_token(dto.access_token, record.subject)

        if dto.all_sessions:
            return self.tokens.revoke_all_for_subject(record.subject)
        return self.tokens.revoke_token_chain(record)

    # ------------------------------------------------------------------ #
    # Utilities
    # ------------------------------------------------------------------ #

    def _limiter_key(self, plaintext: str) -> str:
        return f"refresh:{self.tokens.hasher.hash(plaintext)}"

    def _new_plaintext(self) -> str:
        return secrets.token_urlsafe(self.cfg.refresh_token_bytes)

    def _pair_for(self, record: RefreshTokenRecord, plaintext: str, *, fresh: bool) -> TokenPairOut:
        access = self.access_tokens.create_access_token(
            identity=record.subject,
            expires_delta=self.cfg.access_expires,
            fresh=fresh,
        )
        return TokenPairOut(
            access_token=access,
            refresh_token=plaintext,
            expires_in=int(self.cfg.access_expires.total_seconds()),
        )

    def _denylist_access_token(self, access_token: str, subject: str) -> None:
        try:
            owner = self.access_tokens.get_subject(access_token)
            jti = self.access_tokens.get_jti(access_token)
            expires_at = self.access_tokens.get_expires_at(access_token)
        except ValueError:
            raise AuthenticationFailedError() from None
        if str(owner) != subject:
            raise AuthenticationFailedError()
        if expires_at > self.now_utc():
            self.denylist.revoke_jti(jti=jti, expires_at=expires_at)
