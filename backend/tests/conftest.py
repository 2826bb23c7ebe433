"""Pytest fixtures configuring an isolated transactional database layer.

Each test runs inside a SAVEPOINT-backed transaction against an in-memory
SQLite database so data changes never leak between cases. Token-core
fixtures wire the services to in-memory doubles and a controllable clock.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

import fakeredis
import pytest
from refreshguard.core.config import TestingConfig
from refreshguard.core.extensions import db as _db  # Flask-SQLAlchemy instance
from refreshguard.factory import create_app  # application factory under test
from refreshguard.services._shared.ports import (
    InMemoryRefreshTokenStore,
    InMemorySecurityMonitor,
)
from refreshguard.services.refresh_tokens.service import RefreshTokenService
from sqlalchemy import event
from sqlalchemy.orm import scoped_session, sessionmaker


class TestConfig(TestingConfig):
    """Testing configuration for creating the Flask app.

    Notes
    -----
    - Uses an in-memory SQLite database for speed.
    - Keeps the in-memory token store and no Redis (no external services).
    - A tight refresh rate limit so the 429 path is reachable in API tests.
    """

    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = "test-secret-key-with-enough-entropy-0123456789"
    AUTH_REFRESH_RATE_LIMIT = 3
    AUTH_REFRESH_RATE_WINDOW = 60


class MutableClock:
    """Callable UTC clock that tests move forward explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing.

    Returns
    -------
    flask.Flask
        Application instance with :class:`TestConfig` applied and logging
        noise reduced.
    """
    # Ensure env-based config does not leak into tests
    os.environ.pop("DATABASE_URL", None)
    os.environ.pop("REDIS_URL", None)
    app = create_app(TestConfig)
    app.logger.setLevel("WARNING")
    return app


@pytest.fixture(scope="session")
def db(app):
    """Create database tables once per test session.

    Parameters
    ----------
    app: flask.Flask
        Application fixture ensuring the Flask context is available.

    Yields
    ------
    flask_sqlalchemy.SQLAlchemy
        Database extension bound to the testing application.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope="session")
def connection(db):
    """Keep a dedicated DBAPI connection open for the whole session.

    Parameters
    ----------
    db: flask_sqlalchemy.SQLAlchemy
        Database extension used to retrieve the engine.

    Yields
    ------
    sqlalchemy.engine.Connection
        Connection reused by nested transactions in each test.
    """
    conn = db.engine.connect()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def session(db, connection):
    """Provide a SQLAlchemy session wrapped in a nested transaction.

    Parameters
    ----------
    db: flask_sqlalchemy.SQLAlchemy
        Database extension whose ``session`` attribute is temporarily
        reassigned.
    connection: sqlalchemy.engine.Connection
        Shared connection maintaining the outer transaction.

    Yields
    ------
    sqlalchemy.orm.scoping.scoped_session
        Scoped session bound to the shared connection; automatically rolled
        back after each test.

    Notes
    -----
    The fixture mirrors the SQLAlchemy 2.0 pattern for transactional tests: it
    begins a top-level transaction, starts a SAVEPOINT per test, and reinstalls
    the SAVEPOINT whenever SQLAlchemy ends one.
    """
    # 1) Top-level transaction
    top_trans = connection.begin()

    # 2) Scoped session bound to the connection
    SessionFactory = sessionmaker(bind=connection, future=True)
    scoped = scoped_session(SessionFactory)

    # 3) SAVEPOINT per test
    nested = connection.begin_nested()

    # 4) Re-create SAVEPOINT when the previous nested transaction ends
    @event.listens_for(scoped(), "after_transaction_end")
    def _restart_savepoint(sess, trans):  # pragma: no cover
        if trans.nested and not trans._parent.nested:
            nonlocal nested
            nested = connection.begin_nested()

    # 5) Monkey-patch db.session so app code uses this scoped session
    original_session = db.session
    db.session.remove()
    db.session = scoped

    try:
        yield scoped
    finally:
        scoped.remove()
        db.session = original_session
        top_trans.rollback()


# -- Hook up Factory Boy to pytest SQLAlchemy session --------------------------
@pytest.fixture(autouse=True)
def _factories_session(session):
    """Wire Factory Boy's session helper to the transactional session fixture."""
    from tests.factories import SQLAlchemySession

    SQLAlchemySession.set(session)
    yield


# -- Token core ----------------------------------------------------------------
@pytest.fixture()
def clock() -> MutableClock:
    """Provide a clock frozen at 2024-01-01T12:00Z until advanced."""
    return MutableClock()


@pytest.fixture()
def store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture()
def monitor() -> InMemorySecurityMonitor:
    return InMemorySecurityMonitor()


@pytest.fixture()
def tokens(store, monitor, clock) -> RefreshTokenService:
    """Refresh-token facade wired to in-memory doubles and ``clock``."""
    return RefreshTokenService(store=store, monitor=monitor, clock=clock)


@pytest.fixture()
def fake_redis():
    """Provide a fresh FakeRedis instance for each test."""
    r = fakeredis.FakeRedis()
    r.flushall()
    return r


# -- HTTP ----------------------------------------------------------------------
@pytest.fixture()
def client(app, session):
    """Return a test client bound to the application."""
    return app.test_client()


@pytest.fixture()
def issue_pair(app):
    """Issue a fresh token pair through the application's own services."""
    from refreshguard.core.container import get_services
    from refreshguard.services.auth.dto import IssueIn

    def _issue(subject: str = "api-user@example.com"):
        return get_services().auth().issue(IssueIn(subject=subject))

    return _issue
