"""Refresh-token model: hashed secret, lineage and provenance columns."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from refreshguard.core.extensions import db
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord

from .base import ReprMixin, UTCDateTime


class RefreshToken(ReprMixin, db.Model):
    """
    One issued refresh token.

    Only the SHA-256 digest of the secret is stored. Lineage is kept as a
    plain id back-reference (``rotated_from_id``) without an ORM relationship
    so chain walks always go through explicit queries.

    Fields
    ------
    id : str
        uuid4 hex identifier assigned by the store.
    token_hash : str
        64-char hex digest; unique.
    subject : str
        Owner reference (user email or id).
    issued_at, valid_until : datetime
        Creation and absolute expiry (UTC).
    revoked_at, rotated_at : datetime | None
        Terminal markers; each is written at most once.
    rotated_from_id : str | None
        Predecessor id. ``SET NULL`` when the predecessor row is purged.
    ip_address, user_agent : str | None
        Provenance captured at issuance.
    """

    __tablename__ = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    subject: Mapped[str] = mapped_column(String(180), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rotated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rotated_from_id: Mapped[str | None] = mapped_column(
        String(32),
        ForeignKey("refresh_tokens.id", ondelete="SET NULL"),
        nullable=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        Index("uq_refresh_tokens_token_hash", "token_hash", unique=True),
        Index("ix_refresh_tokens_rotated_from_id", "rotated_from_id"),
        Index("ix_refresh_tokens_subject", "subject"),
        Index("ix_refresh_tokens_valid_until", "valid_until"),
    )

    # -------------------- Record mapping --------------------
    def to_record(self) -> RefreshTokenRecord:
        """Return the immutable value view of this row."""
        return RefreshTokenRecord(
            id=self.id,
            token_hash=self.token_hash,
            subject=self.subject,
            issued_at=self.issued_at,
            valid_until=self.valid_until,
            revoked_at=self.revoked_at,
            rotated_at=self.rotated_at,
            rotated_from=self.rotated_from_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> RefreshToken:
        """Build a transient row from a value record."""
        return cls(
            id=record.id,
            token_hash=record.token_hash,
            subject=record.subject,
            issued_at=record.issued_at,
            valid_until=record.valid_until,
            revoked_at=record.revoked_at,
            rotated_at=record.rotated_at,
            rotated_from_id=record.rotated_from,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        )
