from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from refreshguard.services._shared.errors import ConflictError, StorageUnavailableError
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord


class RefreshTokenStore(Protocol):
    """
    Persistence port for refresh-token records.

    Every method is a single atomic operation against the backing store.
    ``rotate`` and ``revoke`` MUST be atomic: concurrent callers observe
    either none or all of their effects. Implementations raise
    :class:`StorageUnavailableError` when the backend fails or times out.
    """

    def new_id(self) -> str:
        """Generate a new opaque record identifier."""
        return uuid4().hex

    def save(self, record: RefreshTokenRecord) -> None:
        """
        Insert a brand-new record.

        :raises ConflictError: when the id or the token hash already exists.
        """

    def get(self, token_id: str) -> RefreshTokenRecord | None:
        """Fetch a record by id."""

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """Fetch the record whose digest equals ``token_hash``."""

    def find_children(self, parent_id: str) -> list[RefreshTokenRecord]:
        """Return records whose ``rotated_from`` is ``parent_id``."""

    def find_by_subject(self, subject: str) -> list[RefreshTokenRecord]:
        """Return every record owned by ``subject``."""

    def rotate(
        self,
        *,
        old_id: str,
        successor: RefreshTokenRecord,
        rotated_at: datetime,
    ) -> bool:
        """
        Atomically supersede ``old_id`` and insert ``successor``.

        The old record is marked rotated only if it is neither rotated nor
        revoked; the successor is inserted in the same step.

        :returns: ``True`` when this call won; ``False`` when the old record
            was missing, already rotated or revoked (nothing is written).
        """

    def revoke(self, token_ids: Iterable[str], *, revoked_at: datetime) -> int:
        """
        Atomically mark every listed record revoked.

        :returns: Number of records that were not revoked before this call.
        """

    def delete_expired(self, *, before: datetime) -> int:
        """
        Delete records whose ``valid_until`` is earlier than ``before``.

        Surviving children get ``rotated_from`` cleared.

        :returns: Number of deleted records.
        """


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    In-memory refresh-token store with atomic rotation behavior.

    .. note::
       A re-entrant lock guards every operation. Acquisition is bounded by
       ``timeout`` seconds so a wedged caller surfaces as
       :class:`StorageUnavailableError` rather than blocking forever.
    """

    def __init__(self, *, timeout: float = 2.0) -> None:
        self._by_id: dict[str, RefreshTokenRecord] = {}
        self._by_hash: dict[str, str] = {}
        self._children: dict[str, list[str]] = {}
        self._by_subject: dict[str, list[str]] = {}
        self._timeout = timeout
        self._lock = threading.RLock()

    # ------------------------- helpers -------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._timeout):
            raise StorageUnavailableError("Token store lock timed out")
        try:
            yield
        finally:
            self._lock.release()

    def _insert(self, record: RefreshTokenRecord) -> None:
        if record.id in self._by_id:
            raise ConflictError("RefreshToken", f"duplicate id {record.id}")
        if record.token_hash in self._by_hash:
            raise ConflictError("RefreshToken", "duplicate token hash")
        self._by_id[record.id] = record
        self._by_hash[record.token_hash] = record.id
        self._by_subject.setdefault(record.subject, []).append(record.id)
        if record.rotated_from is not None:
            self._children.setdefault(record.rotated_from, []).append(record.id)

    # -------------------------- API ----------------------------

    def save(self, record: RefreshTokenRecord) -> None:
        with self._locked():
            self._insert(record)

    def get(self, token_id: str) -> RefreshTokenRecord | None:
        with self._locked():
            return self._by_id.get(token_id)

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        with self._locked():
            token_id = self._by_hash.get(token_hash)
            return self._by_id.get(token_id) if token_id else None

    def find_children(self, parent_id: str) -> list[RefreshTokenRecord]:
        with self._locked():
            return [self._by_id[c] for c in self._children.get(parent_id, []) if c in self._by_id]

    def find_by_subject(self, subject: str) -> list[RefreshTokenRecord]:
        with self._locked():
            return [self._by_id[t] for t in self._by_subject.get(subject, []) if t in self._by_id]

    def rotate(
        self,
        *,
        old_id: str,
        successor: RefreshTokenRecord,
        rotated_at: datetime,
    ) -> bool:
        with self._locked():
            old = self._by_id.get(old_id)
            if old is None or old.is_rotated or old.is_revoked:
                return False
            self._insert(successor)
            self._by_id[old_id] = replace(old, rotated_at=rotated_at)
            return True

    def revoke(self, token_ids: Iterable[str], *, revoked_at: datetime) -> int:
        with self._locked():
            count = 0
            for token_id in dict.fromkeys(token_ids):
                record = self._by_id.get(token_id)
                if record is None or record.is_revoked:
                    continue
                self._by_id[token_id] = replace(record, revoked_at=revoked_at)
                count += 1
            return count

    def delete_expired(self, *, before: datetime) -> int:
        with self._locked():
            expired = [r for r in self._by_id.values() if r.valid_until < before]
            for record in expired:
                del self._by_id[record.id]
                self._by_hash.pop(record.token_hash, None)
                ids = self._by_subject.get(record.subject, [])
                if record.id in ids:
                    ids.remove(record.id)
                if record.rotated_from is not None:
                    siblings = self._children.get(record.rotated_from, [])
                    if record.id in siblings:
                        siblings.remove(record.id)
                for child_id in self._children.pop(record.id, []):
                    child = self._by_id.get(child_id)
                    if child is not None:
                        self._by_id[child_id] = replace(child, rotated_from=None)
            return len(expired)
