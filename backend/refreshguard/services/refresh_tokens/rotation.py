# refreshguard/services/refresh_tokens/rotation.py
from __future__ import annotations

from datetime import datetime, timedelta

from refreshguard.services._shared.base import Clock, utc_now
from refreshguard.services._shared.errors import (
    ServiceError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenReusedError,
    TokenRevokedError,
)
from refreshguard.services._shared.ports.refresh_token_store import RefreshTokenStore
from refreshguard.services.refresh_tokens.dto import (
    RefreshTokenRecord,
    TokenInspection,
    TokenStatus,
)
from refreshguard.services.refresh_tokens.hasher import TokenHasher

DEFAULT_TTL = timedelta(seconds=604800)


def as_ttl(ttl: int | float | timedelta) -> timedelta:
    """Normalise a TTL given in seconds or as ``timedelta``; reject negatives."""
    value = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
    if value < timedelta(0):
        raise ValueError("ttl must not be negative")
    return value


class RotationEngine:
    """
    Create, inspect and rotate refresh-token records.

    The engine never revokes anything and never talks to the security
    monitor; it reports outcomes and leaves reactions to the facade.

    :param store: Record store providing atomic ``rotate``.
    :param hasher: Digest used for every lookup.
    :param clock: Callable returning aware UTC ``datetime``.
    :param default_ttl: Lifetime applied when ``create`` gets no ``ttl``.
    :param extend_on_rotation: When ``True`` successors get a fresh
        ``default_ttl``; otherwise they inherit the predecessor's
        ``valid_until`` so a lineage can never outlive its first token.
    """

    def __init__(
        self,
        store: RefreshTokenStore,
        hasher: TokenHasher | None = None,
        *,
        clock: Clock | None = None,
        default_ttl: int | timedelta = DEFAULT_TTL,
        extend_on_rotation: bool = False,
    ) -> None:
        self.store = store
        self.hasher = hasher or TokenHasher()
        self._clock = clock or utc_now
        self.default_ttl = as_ttl(default_ttl)
        self.extend_on_rotation = extend_on_rotation

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    def create(
        self,
        *,
        subject: str,
        plaintext: str,
        ttl: int | timedelta | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshTokenRecord:
        """
        Persist a root record for ``plaintext``.

        :raises ValueError: on empty plaintext/subject or negative ``ttl``.
        :raises ConflictError: if the digest already exists.
        """
        if not plaintext:
            raise ValueError("plaintext must not be empty")
        if not subject:
            raise ValueError("subject must not be empty")
        lifetime = self.default_ttl if ttl is None else as_ttl(ttl)
        now = self._clock()
        record = RefreshTokenRecord(
            id=self.store.new_id(),
            token_hash=self.hasher.hash(plaintext),
            subject=subject,
            issued_at=now,
            valid_until=now + lifetime,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.store.save(record)
        return record

    # ------------------------------------------------------------------ #
    # Inspection
    # ------------------------------------------------------------------ #

    def inspect(self, plaintext: str) -> TokenInspection:
        """
        Classify ``plaintext`` without side effects.

        Order: not found, rotated (reuse), expired, revoked, valid. Reuse is
        checked before expiry so a stale replay is still reported as reuse.
        """
        token_hash = self.hasher.hash(plaintext)
        record = self.store.find_by_hash(token_hash)
        return TokenInspection(self.classify(record), token_hash, record)

    def classify(self, record: RefreshTokenRecord | None, now: datetime | None = None) -> TokenStatus:
        if record is None:
            return TokenStatus.NOT_FOUND
        if record.is_rotated:
            return TokenStatus.REUSED
        if record.is_expired(now or self._clock()):
            return TokenStatus.EXPIRED
        if record.is_revoked:
            return TokenStatus.REVOKED
        return TokenStatus.VALID

    # ------------------------------------------------------------------ #
    # Rotation
    # ------------------------------------------------------------------ #

    def rotate(
        self,
        old: RefreshTokenRecord,
        new_plaintext: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshTokenRecord:
        """
        Supersede ``old`` with a successor bound to ``new_plaintext``.

        The store flips ``old.rotated_at`` and inserts the successor in one
        atomic step; a concurrent winner makes this call lose and the current
        state of ``old`` decides which error is raised.

        :returns: The successor record (``rotated_at`` is ``None``).
        :raises TokenReusedError: ``old`` was already rotated.
        :raises TokenRevokedError: ``old`` was revoked.
        :raises TokenExpiredError: ``old`` is past ``valid_until``.
        :raises TokenNotFoundError: ``old`` no longer exists.
        """
        if not new_plaintext:
            raise ValueError("new_plaintext must not be empty")

        now = self._clock()
        status = self.classify(old, now)
        if status is not TokenStatus.VALID:
            raise self._error_for(status, old)

        successor = RefreshTokenRecord(
            id=self.store.new_id(),
            token_hash=self.hasher.hash(new_plaintext),
            subject=old.subject,
            issued_at=now,
            valid_until=now + self.default_ttl if self.extend_on_rotation else old.valid_until,
            rotated_from=old.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if self.store.rotate(old_id=old.id, successor=successor, rotated_at=now):
            return successor

        # Lost the compare-and-set: report what the winner left behind.
        current = self.store.get(old.id)
        status = self.classify(current, now)
        if status is TokenStatus.VALID:
            raise ServiceError("Unable to refresh token.")
        raise self._error_for(status, current or old)

    @staticmethod
    def _error_for(status: TokenStatus, record: RefreshTokenRecord) -> ServiceError:
        if status is TokenStatus.NOT_FOUND:
            return TokenNotFoundError(record=None)
        if status is TokenStatus.REUSED:
            return TokenReusedError(record=record)
        if status is TokenStatus.EXPIRED:
            return TokenExpiredError(record=record)
        if status is TokenStatus.REVOKED:
            return TokenRevokedError(record=record)
        return ServiceError("Unable to refresh token.")
