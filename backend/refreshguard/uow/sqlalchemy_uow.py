"""
SQLAlchemy Units of Work for the refresh-token table.

The writer commits on success and rolls back on error. The read-only variant
backs every lookup of the SQL token store: it never commits and refuses any
write that slips into its scope, so a verification can never mutate state.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import InvalidRequestError, SQLAlchemyError
from sqlalchemy.orm import Session, SessionTransaction, scoped_session

from refreshguard.core.extensions import db
from refreshguard.repositories import RefreshTokenRepository
from refreshguard.uow.base import UnitOfWork

log = logging.getLogger(__name__)

# Dialects that understand ``SET TRANSACTION ... READ ONLY``
_SET_TRANSACTION_DIALECTS = ("postgresql", "mysql", "mariadb")

# Leading SQL keywords refused inside a read-only scope
_WRITE_KEYWORDS = frozenset(
    {"insert", "update", "delete", "merge", "replace", "create", "alter", "drop", "truncate"}
)


class _SessionScope(UnitOfWork):
    """Bind the token repository to one session (explicit or Flask-scoped)."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session if session is not None else db.session
        self.refresh_tokens = RefreshTokenRepository(session=self.session)


class SQLAlchemyUnitOfWork(_SessionScope):
    """Read-write transaction: commit on clean exit, roll back otherwise."""

    def __enter__(self) -> SQLAlchemyUnitOfWork:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.rollback()
            return
        try:
            self.commit()
        except Exception:
            self.rollback()
            raise

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class SQLAlchemyReadOnlyUnitOfWork(_SessionScope):
    """
    Read-only scope for token lookups.

    On entry the scope tries to own a fresh transaction; on PostgreSQL and
    MySQL it is then marked ``READ ONLY`` at the database. When the session
    is already inside a transaction the scope attaches to it instead and the
    outer owner keeps control of its outcome.

    Whatever the dialect, two guards stay installed for the duration of the
    scope: ORM flushes with pending changes and raw DML/DDL statements raise
    :class:`RuntimeError`. An owned transaction is always rolled back on exit.

    :param enforce_db_readonly: Issue ``SET TRANSACTION READ ONLY`` when the
        dialect supports it.
    :param session: Explicit session; defaults to the Flask-scoped one.
    """

    def __init__(
        self,
        *,
        enforce_db_readonly: bool = True,
        session: Session | None = None,
    ) -> None:
        super().__init__(session=session)
        self.enforce_db_readonly = enforce_db_readonly
        self._owned: SessionTransaction | None = None
        self._conn: Connection | None = None
        self._guards: list[tuple[Any, str, Any]] = []

    def __enter__(self) -> SQLAlchemyReadOnlyUnitOfWork:
        try:
            self._owned = self.session.begin()
        except InvalidRequestError:
            # Already in a transaction (autobegin or test fixture): attach.
            self._owned = None

        self._conn = self.session.connection()
        self._install_guards()

        if (
            self._owned is not None
            and self.enforce_db_readonly
            and self._conn.dialect.name in _SET_TRANSACTION_DIALECTS
        ):
            try:
                self.session.execute(text("SET TRANSACTION READ ONLY"))
            except SQLAlchemyError as exc:
                log.warning("SET TRANSACTION READ ONLY failed (%s); guards only.", exc)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._owned is not None:
                self.session.rollback()
        finally:
            self._owned = None
            self._remove_guards()
            self._conn = None

    def commit(self) -> None:
        raise RuntimeError("Read-only UnitOfWork does not allow commit().")

    def rollback(self) -> None:
        self.session.rollback()

    # ------------------------------ Guards ------------------------------

    def _install_guards(self) -> None:
        def _refuse_flush(session, flush_context, instances):
            if session.new or session.dirty or session.deleted:
                raise RuntimeError(
                    "Read-only UnitOfWork: ORM flush blocked (new/dirty/deleted objects present)."
                )

        def _refuse_dml(conn, cursor, statement, parameters, context, executemany):
            keyword = statement.lstrip().split(None, 1)[0].lower() if statement else ""
            if keyword in _WRITE_KEYWORDS:
                raise RuntimeError(f"Read-only UnitOfWork: SQL statement blocked: {keyword.upper()}")

        # Listen on the concrete Session; a scoped_session target would hook
        # every session of its class.
        session = self.session() if isinstance(self.session, scoped_session) else self.session
        target = self._conn if self._conn is not None else session.get_bind()
        for obj, name, fn in (
            (session, "before_flush", _refuse_flush),
            (target, "before_cursor_execute", _refuse_dml),
        ):
            event.listen(obj, name, fn)
            self._guards.append((obj, name, fn))

    def _remove_guards(self) -> None:
        while self._guards:
            obj, name, fn = self._guards.pop()
            with suppress(InvalidRequestError):
                event.remove(obj, name, fn)
