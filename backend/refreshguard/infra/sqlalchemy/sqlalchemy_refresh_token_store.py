# refreshguard/infra/sqlalchemy/sqlalchemy_refresh_token_store.py
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from refreshguard.models.refresh_token import RefreshToken
from refreshguard.services._shared.errors import ConflictError, StorageUnavailableError
from refreshguard.services._shared.ports.refresh_token_store import RefreshTokenStore
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord
from refreshguard.uow.sqlalchemy_uow import SQLAlchemyReadOnlyUnitOfWork, SQLAlchemyUnitOfWork

log = logging.getLogger(__name__)


class _RotationLost(Exception):
    """Internal signal: the compare-and-set matched no row, roll back."""


@contextmanager
def _storage_errors() -> Iterator[None]:
    """Map driver failures onto the store's error contract."""
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError("RefreshToken", "duplicate id or token hash") from exc
    except SQLAlchemyError as exc:
        log.error("Refresh token storage failure: %s", exc.__class__.__name__)
        raise StorageUnavailableError(f"Database error: {exc.__class__.__name__}") from exc


class SQLAlchemyRefreshTokenStore(RefreshTokenStore):
    """
    Relational refresh-token store.

    Every write runs inside one :class:`SQLAlchemyUnitOfWork`; reads use the
    read-only variant. ``rotate`` relies on a conditional ``UPDATE`` so the
    database decides which of several concurrent callers wins.

    :param session_factory: Returns the session to use; defaults to the
        Flask-scoped ``db.session``.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session | None:
        return self._session_factory() if self._session_factory is not None else None

    def _write(self) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session=self._session())

    def _read(self) -> SQLAlchemyReadOnlyUnitOfWork:
        return SQLAlchemyReadOnlyUnitOfWork(session=self._session())

    # ------------------------------ Writes ------------------------------

    def save(self, record: RefreshTokenRecord) -> None:
        with _storage_errors(), self._write() as uow:
            uow.refresh_tokens.add(RefreshToken.from_record(record))
            uow.refresh_tokens.flush()

    def rotate(
        self,
        *,
        old_id: str,
        successor: RefreshTokenRecord,
        rotated_at: datetime,
    ) -> bool:
        """
        Mark ``old_id`` rotated and insert ``successor`` in one transaction.

        :returns: ``False`` (nothing written) when ``old_id`` was already
            rotated, revoked or missing.
        """
        try:
            with _storage_errors(), self._write() as uow:
                if not uow.refresh_tokens.mark_rotated(old_id, rotated_at):
                    raise _RotationLost()
                uow.refresh_tokens.add(RefreshToken.from_record(successor))
                uow.refresh_tokens.flush()
        except _RotationLost:
            log.debug("Rotation of %s lost the compare-and-set", old_id)
            return False
        return True

    def revoke(self, token_ids: Iterable[str], *, revoked_at: datetime) -> int:
        with _storage_errors(), self._write() as uow:
            return uow.refresh_tokens.revoke_ids(token_ids, revoked_at)

    def delete_expired(self, *, before: datetime) -> int:
        with _storage_errors(), self._write() as uow:
            return uow.refresh_tokens.delete_expired(before)

    # ------------------------------ Reads -------------------------------

    def get(self, token_id: str) -> RefreshTokenRecord | None:
        with _storage_errors(), self._read() as uow:
            row = uow.refresh_tokens.get(token_id)
            return row.to_record() if row is not None else None

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        with _storage_errors(), self._read() as uow:
            row = uow.refresh_tokens.find_by_hash(token_hash)
            return row.to_record() if row is not None else None

    def find_children(self, parent_id: str) -> list[RefreshTokenRecord]:
        with _storage_errors(), self._read() as uow:
            return [row.to_record() for row in uow.refresh_tokens.find_children(parent_id)]

    def find_by_subject(self, subject: str) -> list[RefreshTokenRecord]:
        with _storage_errors(), self._read() as uow:
            return [row.to_record() for row in uow.refresh_tokens.list_for_subject(subject)]
