# refreshguard/services/refresh_tokens/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# ---------------------------- Value records -------------------------------- #


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """
    Persisted state of one refresh token.

    Storage adapters map their own representation (ORM row, Redis hash, dict)
    to this immutable value; mutations produce new instances.

    :param id: Opaque identifier, assigned at creation.
    :param token_hash: SHA-256 hex digest of the plaintext (unique).
    :param subject: Owner reference (user email or id).
    :param issued_at: Creation instant (UTC).
    :param valid_until: Absolute expiry instant (UTC). Never mutated.
    :param revoked_at: Set once the record is revoked.
    :param rotated_at: Set only on the record that was superseded.
    :param rotated_from: Id of the immediate predecessor, if any.
    :param ip_address: Client IP at issuance (advisory).
    :param user_agent: Client user agent at issuance (advisory).
    """

    id: str
    token_hash: str
    subject: str
    issued_at: datetime
    valid_until: datetime
    revoked_at: datetime | None = None
    rotated_at: datetime | None = None
    rotated_from: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_rotated(self) -> bool:
        return self.rotated_at is not None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        """Return ``True`` when ``now`` has reached ``valid_until``."""
        return self.valid_until <= now

    def is_active(self, now: datetime) -> bool:
        """Verifiable right now: not rotated, not revoked, not expired."""
        return not (self.is_rotated or self.is_revoked or self.is_expired(now))


class TokenStatus(str, Enum):
    """Outcome of inspecting a presented refresh token."""

    VALID = "valid"
    NOT_FOUND = "not_found"
    REUSED = "reused"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True, slots=True)
class TokenInspection:
    """
    Result of a side-effect free check.

    :param status: Classification of the token.
    :param token_hash: Digest of the presented plaintext.
    :param record: The matching record, ``None`` when not found.
    """

    status: TokenStatus
    token_hash: str
    record: RefreshTokenRecord | None = None
