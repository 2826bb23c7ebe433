"""Factory Boy base wired to the per-test SAVEPOINT session."""

from __future__ import annotations

import factory


class SQLAlchemySession:
    """Holder for the session the ``session`` fixture creates for each test."""

    _session = None

    @classmethod
    def set(cls, session):
        cls._session = session

    @classmethod
    def get(cls):
        """Return the current test session.

        Raises
        ------
        RuntimeError
            If a factory runs in a test that does not use the ``session`` fixture.
        """
        if cls._session is None:
            raise RuntimeError("Factories session not set. Did you pass the 'session' fixture?")
        return cls._session


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Persist factory rows with ``flush`` so the test transaction can roll them back."""

    class Meta:
        abstract = True
        # Resolved per call: each test installs a fresh session.
        sqlalchemy_session_factory = SQLAlchemySession.get
        sqlalchemy_session_persistence = "flush"
