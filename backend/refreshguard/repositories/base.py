"""Generic repository base for SQLAlchemy 2.x.

Repositories stay persistence-only: they never commit or roll back (the Unit
of Work owns transactions) and never decide token policy. Filtering and
sorting are opt-in through whitelists, so public keys never reach SQL
unchecked.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar, cast

from sqlalchemy import Select, select
from sqlalchemy.orm import InstrumentedAttribute, Session

from refreshguard.core.extensions import db

E = TypeVar("E")  # SQLAlchemy mapped entity type


def apply_sorting(
    stmt: Select[Any],
    sortable_fields: Mapping[str, InstrumentedAttribute[Any]],
    tokens: Iterable[str],
    *,
    pk_attr: InstrumentedAttribute[Any] | None,
) -> Select[Any]:
    """Add ``ORDER BY`` clauses for whitelisted sort tokens.

    A leading ``-`` sorts descending; unknown tokens are skipped. The primary
    key is appended last so equal timestamps still order deterministically.

    :param stmt: Base selectable.
    :param sortable_fields: Public key to column mapping.
    :param tokens: Sort tokens such as ``["-issued_at"]``.
    :param pk_attr: Tiebreaker column.
    :returns: Ordered select.
    """
    for token in tokens:
        name = token.lstrip("-").strip()
        col = sortable_fields.get(name)
        if col is not None:
            stmt = stmt.order_by(col.desc() if token.startswith("-") else col.asc())
    if pk_attr is not None:
        stmt = stmt.order_by(pk_attr.asc())
    return stmt


class BaseRepository(Generic[E]):
    """Persistence helpers for a single mapped model.

    Subclasses set ``model`` and may override :meth:`_sortable_fields` and
    :meth:`_filterable_fields`.
    """

    model: type[E]

    def __init__(self, session: Session | None = None) -> None:
        """
        :param session: Session shared by the Unit of Work; falls back to the
            Flask-scoped ``db.session`` when omitted.
        """
        self._session: Session | None = session

    @property
    def session(self) -> Session:
        if self._session is not None:
            return self._session
        return cast(Session, db.session)

    # ------------------------------ Whitelists -------------------------------

    def _pk_attr(self) -> InstrumentedAttribute[Any] | None:
        return getattr(self.model, "id", None)

    def _sortable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]]:
        return {}

    def _filterable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]]:
        return {}

    # --------------------------------- CRUD ----------------------------------

    def add(self, instance: E) -> E:
        """Stage ``instance`` and flush so unique-digest violations surface now."""
        self.session.add(instance)
        self.flush()
        return instance

    def get(self, entity_id: Any) -> E | None:
        """Fetch one row by primary key (``None`` when absent)."""
        pk_attr = self._pk_attr()
        if pk_attr is None:
            raise RuntimeError(f"{type(self).__name__}.get requires an 'id' column.")
        stmt = select(self.model).where(pk_attr == entity_id)
        return cast(E | None, self.session.execute(stmt).scalars().first())

    def flush(self) -> None:
        self.session.flush()

    def list(
        self,
        *,
        filters: Mapping[str, Any] | None = None,
        sort: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[E]:
        """
        List rows matching whitelisted equality ``filters``.

        Unknown filter keys are ignored, like unknown sort tokens.
        """
        stmt: Select[Any] = select(self.model)
        allowed = self._filterable_fields()
        for key, value in (filters or {}).items():
            col = allowed.get(key)
            if col is not None:
                stmt = stmt.where(col == value)
        stmt = apply_sorting(stmt, self._sortable_fields(), sort or [], pk_attr=self._pk_attr())
        if limit is not None:
            stmt = stmt.limit(int(limit))
        return list(self.session.execute(stmt).scalars().all())
