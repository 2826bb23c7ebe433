# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, cast

import redis  # type: ignore[import-untyped]

from refreshguard.infra.redis._support import decode as _s
from refreshguard.infra.redis._support import unavailable_on_error as _unavailable_on_error
from refreshguard.services._shared.errors import ConflictError
from refreshguard.services._shared.ports.refresh_token_store import RefreshTokenStore
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord

def _dt(value: str) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(slots=True)
class RedisRefreshTokenStore(RefreshTokenStore):
    """
    Redis-backed refresh-token store with atomic rotation.

    Layout
    ------
    - ``rt:{id}``: hash with the record fields (ISO timestamps, ``""`` = null).
    - ``rt:h:{token_hash}``: id of the record owning a digest.
    - ``rt:c:{parent_id}``: set of child ids (descendant lookup).
    - ``rt:s:{subject}``: set of ids owned by a subject.
    - ``rt:exp``: sorted set of ids scored by ``valid_until`` (cleanup).

    Record keys expire ``retention`` after ``valid_until`` so late replays
    are still recognised as reuse for a while.

    :param r: A Redis client (already connected).
    :param retention: Extra lifetime kept after expiry.
    """

    r: redis.Redis
    retention: timedelta = timedelta(days=1)

    # -------------------- helpers --------------------

    @staticmethod
    def _k(token_id: str) -> str:
        return f"rt:{token_id}"

    @staticmethod
    def _kh(token_hash: str) -> str:
        return f"rt:h:{token_hash}"

    @staticmethod
    def _kc(parent_id: str) -> str:
        return f"rt:c:{parent_id}"

    @staticmethod
    def _ks(subject: str) -> str:
        return f"rt:s:{subject}"

    K_EXPIRY = "rt:exp"

    def _expire_at(self, record: RefreshTokenRecord) -> int:
        return int((record.valid_until + self.retention).timestamp())

    @staticmethod
    def _mapping(record: RefreshTokenRecord) -> dict[str, str]:
        def iso(dt: datetime | None) -> str:
            return dt.astimezone(UTC).isoformat() if dt else ""

        return {
            "token_hash": record.token_hash,
            "subject": record.subject,
            "issued_at": iso(record.issued_at),
            "valid_until": iso(record.valid_until),
            "revoked_at": iso(record.revoked_at),
            "rotated_at": iso(record.rotated_at),
            "rotated_from": record.rotated_from or "",
            "ip_address": record.ip_address or "",
            "user_agent": record.user_agent or "",
        }

    @staticmethod
    def _from_hash(token_id: str, h: dict[Any, Any]) -> RefreshTokenRecord | None:
        if not h:
            return None
        f = {_s(k): _s(v) for k, v in h.items()}
        issued_at = _dt(f.get("issued_at", ""))
        valid_until = _dt(f.get("valid_until", ""))
        if issued_at is None or valid_until is None:
            return None
        return RefreshTokenRecord(
            id=token_id,
            token_hash=f.get("token_hash", ""),
            subject=f.get("subject", ""),
            issued_at=issued_at,
            valid_until=valid_until,
            revoked_at=_dt(f.get("revoked_at", "")),
            rotated_at=_dt(f.get("rotated_at", "")),
            rotated_from=f.get("rotated_from") or None,
            ip_address=f.get("ip_address") or None,
            user_agent=f.get("user_agent") or None,
        )

    def _queue_insert(self, p: Any, record: RefreshTokenRecord) -> None:
        """Queue every write of a new record on a MULTI pipeline."""
        expire_at = self._expire_at(record)
        key = self._k(record.id)
        p.hset(key, mapping=self._mapping(record))
        p.expireat(key, expire_at)
        p.set(self._kh(record.token_hash), record.id)
        p.expireat(self._kh(record.token_hash), expire_at)
        p.sadd(self._ks(record.subject), record.id)
        p.zadd(self.K_EXPIRY, {record.id: record.valid_until.timestamp()})
        if record.rotated_from:
            p.sadd(self._kc(record.rotated_from), record.id)
            p.expireat(self._kc(record.rotated_from), expire_at)

    def _ensure_new(self, p: Any, record: RefreshTokenRecord) -> None:
        """Raise ``ConflictError`` if the id or the digest is already taken (watched read)."""
        if p.exists(self._k(record.id)):
            raise ConflictError("RefreshToken", f"duplicate id {record.id}")
        if p.exists(self._kh(record.token_hash)):
            raise ConflictError("RefreshToken", "duplicate token hash")

    def _load_many(self, ids: Iterable[str]) -> list[RefreshTokenRecord]:
        id_list = list(ids)
        if not id_list:
            return []
        pipe = self.r.pipeline(transaction=False)
        for token_id in id_list:
            pipe.hgetall(self._k(token_id))
        found: list[RefreshTokenRecord] = []
        for token_id, h in zip(id_list, pipe.execute(), strict=True):
            record = self._from_hash(token_id, h)
            if record is not None:
                found.append(record)
        return found

    # -------------------- API ------------------------

    @_unavailable_on_error
    def save(self, record: RefreshTokenRecord) -> None:
        """Insert ``record`` with WATCH on its id and digest keys."""
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(self._k(record.id), self._kh(record.token_hash))
                    self._ensure_new(p, record)
                    p.multi()
                    self._queue_insert(p, record)
                    p.execute()
                return
            except redis.WatchError:
                continue

    @_unavailable_on_error
    def get(self, token_id: str) -> RefreshTokenRecord | None:
        return self._from_hash(token_id, self.r.hgetall(self._k(token_id)))

    @_unavailable_on_error
    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        token_id = _s(self.r.get(self._kh(token_hash)))
        if not token_id:
            return None
        return self._from_hash(token_id, self.r.hgetall(self._k(token_id)))

    @_unavailable_on_error
    def find_children(self, parent_id: str) -> list[RefreshTokenRecord]:
        ids = sorted(_s(m) for m in self.r.smembers(self._kc(parent_id)))
        return sorted(self._load_many(ids), key=lambda rec: rec.issued_at)

    @_unavailable_on_error
    def find_by_subject(self, subject: str) -> list[RefreshTokenRecord]:
        key_s = self._ks(subject)
        ids = sorted(_s(m) for m in self.r.smembers(key_s))
        records = self._load_many(ids)
        stale = set(ids) - {rec.id for rec in records}
        if stale:
            # Record hash expired or purged; drop it from the index.
            self.r.srem(key_s, *stale)
        return sorted(records, key=lambda rec: rec.issued_at)

    @_unavailable_on_error
    def rotate(
        self,
        *,
        old_id: str,
        successor: RefreshTokenRecord,
        rotated_at: datetime,
    ) -> bool:
        """
        Atomically flip ``old_id`` to rotated and insert ``successor``.

        Uses WATCH/MULTI/EXEC (optimistic locking): the old record and the
        successor keys are watched, their state checked, then both writes
        are queued in one transaction. A concurrent writer aborts the EXEC
        and the loop re-reads; a loser then sees the record rotated and
        returns ``False``.
        """
        k_old = self._k(old_id)
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(k_old, self._k(successor.id), self._kh(successor.token_hash))

                    h = cast(dict[Any, Any], p.hgetall(k_old))
                    if not h:
                        p.unwatch()
                        return False
                    state = {_s(k): _s(v) for k, v in h.items()}
                    if state.get("rotated_at") or state.get("revoked_at"):
                        p.unwatch()
                        return False
                    self._ensure_new(p, successor)

                    p.multi()
                    p.hset(k_old, "rotated_at", rotated_at.astimezone(UTC).isoformat())
                    self._queue_insert(p, successor)
                    p.execute()
                return True
            except redis.WatchError:
                continue

    @_unavailable_on_error
    def revoke(self, token_ids: Iterable[str], *, revoked_at: datetime) -> int:
        """Set ``revoked_at`` on every listed live record in one transaction."""
        ids = list(dict.fromkeys(token_ids))
        if not ids:
            return 0
        keys = [self._k(token_id) for token_id in ids]
        stamp = revoked_at.astimezone(UTC).isoformat()
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(*keys)
                    pending = [
                        key
                        for key in keys
                        if p.exists(key) and not _s(p.hget(key, "revoked_at"))
                    ]
                    if not pending:
                        p.unwatch()
                        return 0
                    p.multi()
                    for key in pending:
                        p.hset(key, "revoked_at", stamp)
                    p.execute()
                return len(pending)
            except redis.WatchError:
                continue

    @_unavailable_on_error
    def delete_expired(self, *, before: datetime) -> int:
        """Purge records whose ``valid_until`` is before ``before``; orphan their children."""
        ids = [_s(m) for m in self.r.zrangebyscore(self.K_EXPIRY, "-inf", f"({before.timestamp()}")]
        if not ids:
            return 0
        records = self._load_many(ids)
        pipe = self.r.pipeline(transaction=True)
        for record in records:
            for child in self.r.smembers(self._kc(record.id)):
                child_key = self._k(_s(child))
                if self.r.exists(child_key):
                    pipe.hset(child_key, "rotated_from", "")
            pipe.delete(self._k(record.id), self._kh(record.token_hash), self._kc(record.id))
            pipe.srem(self._ks(record.subject), record.id)
            if record.rotated_from:
                pipe.srem(self._kc(record.rotated_from), record.id)
        pipe.zrem(self.K_EXPIRY, *ids)
        pipe.execute()
        return len(records)
