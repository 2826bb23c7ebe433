"""Refresh-token repository: lookups, lineage queries and guarded updates."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import cast

from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult

from refreshguard.models.refresh_token import RefreshToken
from refreshguard.repositories.base import BaseRepository


class RefreshTokenRepository(BaseRepository[RefreshToken]):
    """Persistence-only repository for :class:`RefreshToken`.

    State transitions (``rotated_at``, ``revoked_at``) are issued as
    conditional ``UPDATE`` statements so the database arbitrates concurrent
    writers: the row is only changed when it is still in the expected state,
    and the affected row count tells the caller whether it won.
    """

    model = RefreshToken

    # ---------------------------- Whitelists ----------------------------

    def _sortable_fields(self):
        return {
            "issued_at": RefreshToken.issued_at,
            "valid_until": RefreshToken.valid_until,
        }

    def _filterable_fields(self):
        return {
            "token_hash": RefreshToken.token_hash,
            "subject": RefreshToken.subject,
            "rotated_from_id": RefreshToken.rotated_from_id,
        }

    # ---------------------------- Lookup helpers ----------------------------

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        """Fetch the row whose digest equals ``token_hash``."""
        stmt = select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        return cast(RefreshToken | None, self.session.execute(stmt).scalars().first())

    def find_children(self, parent_id: str) -> list[RefreshToken]:
        """Return rows created by rotating ``parent_id``, oldest first."""
        return self.list(filters={"rotated_from_id": parent_id}, sort=["issued_at"])

    def list_for_subject(self, subject: str) -> list[RefreshToken]:
        """Return every row owned by ``subject``, oldest first."""
        return self.list(filters={"subject": subject}, sort=["issued_at"])

    # ---------------------------- Guarded updates ----------------------------

    def mark_rotated(self, token_id: str, rotated_at: datetime) -> bool:
        """Compare-and-set ``rotated_at`` on a live row.

        :param token_id: Row to supersede.
        :param rotated_at: Instant of rotation.
        :returns: ``True`` only if this call flipped the row; ``False`` when it
            was already rotated, revoked or missing.
        """
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.id == token_id,
                RefreshToken.rotated_at.is_(None),
                RefreshToken.revoked_at.is_(None),
            )
            .values(rotated_at=rotated_at)
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult, self.session.execute(stmt))
        return result.rowcount == 1

    def revoke_ids(self, token_ids: Iterable[str], revoked_at: datetime) -> int:
        """Set ``revoked_at`` on every listed row not yet revoked.

        :returns: Number of rows newly revoked.
        """
        ids = list(dict.fromkeys(token_ids))
        if not ids:
            return 0
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.id.in_(ids), RefreshToken.revoked_at.is_(None))
            .values(revoked_at=revoked_at)
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult, self.session.execute(stmt))
        return int(result.rowcount or 0)

    def delete_expired(self, before: datetime) -> int:
        """Delete rows whose ``valid_until`` is earlier than ``before``.

        Children of deleted rows keep living with ``rotated_from_id`` cleared
        (``ON DELETE SET NULL``); the column is nulled explicitly first so
        dialects without enforced foreign keys (SQLite) behave the same.

        :returns: Number of deleted rows.
        """
        expired_ids = list(
            self.session.execute(
                select(RefreshToken.id).where(RefreshToken.valid_until < before)
            ).scalars()
        )
        if not expired_ids:
            return 0
        self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.rotated_from_id.in_(expired_ids))
            .values(rotated_from_id=None)
            .execution_options(synchronize_session=False)
        )
        result = cast(
            CursorResult,
            self.session.execute(
                delete(RefreshToken)
                .where(RefreshToken.id.in_(expired_ids))
                .execution_options(synchronize_session=False)
            ),
        )
        return int(result.rowcount or 0)
