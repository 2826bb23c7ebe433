# refreshguard/services/refresh_tokens/service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from refreshguard.services._shared.base import BaseService, Clock, ServiceContext
from refreshguard.services._shared.errors import (
    TokenError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenReusedError,
    TokenRevokedError,
)
from refreshguard.services._shared.ports.refresh_token_store import RefreshTokenStore
from refreshguard.services._shared.ports.security_monitor import (
    LoggingSecurityMonitor,
    SecurityMonitor,
)
from refreshguard.services.refresh_tokens.chain import ChainRevocationService
from refreshguard.services.refresh_tokens.dto import (
    RefreshTokenRecord,
    TokenInspection,
    TokenStatus,
)
from refreshguard.services.refresh_tokens.hasher import TokenHasher
from refreshguard.services.refresh_tokens.rotation import DEFAULT_TTL, RotationEngine

log = logging.getLogger(__name__)


class RefreshTokenService(BaseService):
    """
    Facade of the refresh-token core.

    Orchestrates :class:`RotationEngine` and :class:`ChainRevocationService`
    and reports every outcome to the :class:`SecurityMonitor`.

    Security
    --------
    - Plaintexts are hashed on entry and never stored or logged.
    - Presenting an already-rotated token is treated as theft: the whole
      lineage is revoked before the failure is returned.
    - Monitor failures are logged and never change an outcome.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        monitor: SecurityMonitor | None = None,
        hasher: TokenHasher | None = None,
        clock: Clock | None = None,
        default_ttl: int | timedelta = DEFAULT_TTL,
        extend_on_rotation: bool = False,
        ctx: ServiceContext | None = None,
    ) -> None:
        """
        Initialize the service with its dependencies.

        :param store: Atomic record store.
        :param monitor: Security event sink; defaults to structured logging.
        :param hasher: Token digest; defaults to SHA-256.
        :param clock: Injectable UTC clock.
        :param default_ttl: Lifetime of new lineages.
        :param extend_on_rotation: Give successors a fresh lifetime.
        :param ctx: Request context supplying default provenance.
        """
        super().__init__(ctx=ctx, clock=clock)
        self.store = store
        self.monitor = monitor or LoggingSecurityMonitor()
        self.hasher = hasher or TokenHasher()
        self.engine = RotationEngine(
            store,
            self.hasher,
            clock=self.now_utc,
            default_ttl=default_ttl,
            extend_on_rotation=extend_on_rotation,
        )
        self.chains = ChainRevocationService(store, clock=self.now_utc)

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    def create_token(
        self,
        subject: str,
        plaintext: str,
        ttl: int | timedelta | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshTokenRecord:
        """
        Persist a new lineage root for ``plaintext``.

        :param subject: Owner reference.
        :param plaintext: Secret handed to the client.
        :param ttl: Seconds or ``timedelta``; defaults to 7 days.
        :returns: The stored record.
        """
        record = self.engine.create(
            subject=subject,
            plaintext=plaintext,
            ttl=ttl,
            ip_address=ip_address or self.ctx.ip_address,
            user_agent=user_agent or self.ctx.user_agent,
        )
        self._notify("token_issued", record)
        return record

    # ------------------------------------------------------------------ #
    # Verification
    # ------------------------------------------------------------------ #

    def check_token(self, plaintext: str) -> TokenStatus:
        """
        Classify ``plaintext`` and react to the outcome.

        A :attr:`TokenStatus.REUSED` outcome revokes the whole lineage before
        returning; other failures are reported to the monitor only.
        """
        return self._inspect(plaintext).status

    def verify_token(self, plaintext: str) -> bool:
        """Return ``True`` only for a known, unrotated, unexpired, unrevoked token."""
        return self.check_token(plaintext) is TokenStatus.VALID

    def find_by_plaintext_token(self, plaintext: str) -> RefreshTokenRecord | None:
        return self.store.find_by_hash(self.hasher.hash(plaintext))

    # ------------------------------------------------------------------ #
    # Rotation
    # ------------------------------------------------------------------ #

    def rotate_token(
        self,
        old_record: RefreshTokenRecord,
        new_plaintext: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshTokenRecord:
        """
        Supersede ``old_record`` with a successor for ``new_plaintext``.

        :raises TokenReusedError: after revoking the lineage, when another
            caller rotated ``old_record`` first.
        :raises TokenError: other terminal states of ``old_record``.
        """
        try:
            successor = self.engine.rotate(
                old_record,
                new_plaintext,
                ip_address=ip_address or self.ctx.ip_address,
                user_agent=user_agent or self.ctx.user_agent,
            )
        except TokenReusedError as exc:
            self._handle_reuse(exc.record or old_record)
            raise
        except TokenError as exc:
            self._notify(
                "token_rejected",
                _status_of(exc),
                token_hash=old_record.token_hash,
                record=exc.record,
            )
            raise
        self._notify("token_rotated", old_record, successor)
        return successor

    def refresh(
        self,
        plaintext: str,
        new_plaintext: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshTokenRecord:
        """
        Verify ``plaintext`` and rotate it into ``new_plaintext`` in one call.

        :returns: The successor record.
        :raises TokenError: the specific reason ``plaintext`` was refused.
        """
        inspection = self._inspect(plaintext)
        if inspection.status is not TokenStatus.VALID or inspection.record is None:
            raise _ERRORS[inspection.status](record=inspection.record)
        return self.rotate_token(inspection.record, new_plaintext, ip_address, user_agent)

    # ------------------------------------------------------------------ #
    # Revocation
    # ------------------------------------------------------------------ #

    def revoke_token_chain(self, record: RefreshTokenRecord) -> int:
        """Revoke ``record``'s whole lineage; return the number newly revoked."""
        revoked = self.chains.revoke_chain(record)
        self._notify("token_chain_revoked", record, revoked)
        return revoked

    def get_rotation_chain(self, record: RefreshTokenRecord) -> list[RefreshTokenRecord]:
        """Return ``record``'s lineage, root first, in current stored state."""
        return self.chains.collect_chain(record)

    def revoke_all_for_subject(self, subject: str) -> int:
        """Revoke every record owned by ``subject`` ("log out everywhere")."""
        ids = [r.id for r in self.store.find_by_subject(subject)]
        revoked = self.store.revoke(ids, revoked_at=self.now_utc())
        log.info(
            "Revoked all refresh tokens for subject",
            extra={"event_type": "auth.logout_all", "subject": subject, "revoked": revoked},
        )
        return revoked

    def purge_expired(self, before: datetime | None = None) -> int:
        """Delete records that expired before ``before`` (default: now)."""
        return self.store.delete_expired(before=before or self.now_utc())

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _inspect(self, plaintext: str) -> TokenInspection:
        inspection = self.engine.inspect(plaintext)
        if inspection.status is TokenStatus.REUSED and inspection.record is not None:
            self._handle_reuse(inspection.record)
        elif inspection.status is not TokenStatus.VALID:
            self._notify(
                "token_rejected",
                inspection.status,
                token_hash=inspection.token_hash,
                record=inspection.record,
            )
        return inspection

    def _handle_reuse(self, record: RefreshTokenRecord) -> None:
        self._notify("token_reuse_detected", record)
        self.revoke_token_chain(record)

    def _notify(self, event: str, *args: Any, **kwargs: Any) -> None:
        """Call ``monitor.<event>``; a failing monitor is logged, never raised."""
        try:
            getattr(self.monitor, event)(*args, **kwargs)
        except Exception:
            log.exception("Security monitor failed on %s", event)


_ERRORS: dict[TokenStatus, type[TokenError]] = {
    TokenStatus.NOT_FOUND: TokenNotFoundError,
    TokenStatus.REUSED: TokenReusedError,
    TokenStatus.EXPIRED: TokenExpiredError,
    TokenStatus.REVOKED: TokenRevokedError,
}


def _status_of(exc: TokenError) -> TokenStatus:
    for status, error_type in _ERRORS.items():
        if isinstance(exc, error_type):
            return status
    return TokenStatus.NOT_FOUND
