# tests/unit/services/test_auth_service.py
from __future__ import annotations

from datetime import timedelta

import pytest
from refreshguard.services._shared.errors import (
    AuthenticationFailedError,
    RateLimitedError,
    StorageUnavailableError,
)
from refreshguard.services._shared.ports import (
    InMemoryDenylistStore,
    InMemoryRateLimiter,
    StubTokenProvider,
)
from refreshguard.services.auth.dto import (
    AuthTokenConfig,
    IssueIn,
    LogoutIn,
    RefreshIn,
    TokenPairOut,
)
from refreshguard.services.auth.service import AuthService


class FakeTime:
    """Monotonic seconds for the limiter."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


# ------------------------------ Fixtures ---------------------------------- #
@pytest.fixture()
def limiter_time() -> FakeTime:
    return FakeTime()


@pytest.fixture()
def service(tokens, limiter_time) -> AuthService:
    """Build an AuthService wired to in-memory doubles."""
    return AuthService(
        tokens=tokens,
        token_provider=StubTokenProvider(),
        rate_limiter=InMemoryRateLimiter(limit=3, window=60, clock=limiter_time),
        denylist_store=InMemoryDenylistStore(),
        token_cfg=AuthTokenConfig(refresh_token_bytes=32, reuse_penalty=5),
    )


# -------------------------------- Issue ----------------------------------- #
def test_issue_returns_pair_and_stores_only_digest(service, store):
    pair = service.issue(IssueIn(subject="u1", ip_address="192.0.2.1", user_agent="ua"))
    assert isinstance(pair, TokenPairOut)
    assert pair.access_token.startswith("access.u1.")
    assert pair.token_type == "Bearer"
    assert pair.expires_in == 3600

    record = store.find_by_hash(service.tokens.hasher.hash(pair.refresh_token))
    assert record is not None
    assert record.subject == "u1"
    assert record.ip_address == "192.0.2.1"
    assert record.valid_until - record.issued_at == timedelta(days=7)


def test_issue_generates_distinct_high_entropy_tokens(service):
    first = service.issue(IssueIn(subject="u1"))
    second = service.issue(IssueIn(subject="u1"))
    assert first.refresh_token != second.refresh_token
    assert len(first.refresh_token) >= 43  # token_urlsafe(32)


# ------------------------------- Refresh ---------------------------------- #
def test_refresh_rotates(service, store):
    pair1 = service.issue(IssueIn(subject="u1"))
    pair2 = service.refresh(RefreshIn(refresh_token=pair1.refresh_token, ip_address="192.0.2.9"))

    assert pair2.refresh_token != pair1.refresh_token
    old = store.find_by_hash(service.tokens.hasher.hash(pair1.refresh_token))
    new = store.find_by_hash(service.tokens.hasher.hash(pair2.refresh_token))
    assert old.is_rotated and not new.is_rotated
    assert new.rotated_from == old.id
    assert new.ip_address == "192.0.2.9"


@pytest.mark.parametrize("state", ["unknown", "expired", "revoked", "reused"])
def test_refresh_failures_are_indistinguishable(service, clock, state):
    pair = service.issue(IssueIn(subject="u1"))
    token = pair.refresh_token
    if state == "unknown":
        token = "not-a-token"
    elif state == "expired":
        clock.advance(timedelta(days=8).total_seconds())
    elif state == "revoked":
        service.logout(LogoutIn(refresh_token=token))
    else:
        service.refresh(RefreshIn(refresh_token=token))

    with pytest.raises(AuthenticationFailedError) as excinfo:
        service.refresh(RefreshIn(refresh_token=token))
    assert str(excinfo.value) == "Invalid or expired refresh token"


def test_refresh_reuse_revokes_successor(service):
    pair1 = service.issue(IssueIn(subject="u1"))
    pair2 = service.refresh(RefreshIn(refresh_token=pair1.refresh_token))

    with pytest.raises(AuthenticationFailedError):
        service.refresh(RefreshIn(refresh_token=pair1.refresh_token))
    with pytest.raises(AuthenticationFailedError):
        service.refresh(RefreshIn(refresh_token=pair2.refresh_token))


def test_refresh_is_rate_limited_per_token(service, limiter_time):
    pair = service.issue(IssueIn(subject="u1"))
    bogus = RefreshIn(refresh_token="guess")
    for _ in range(3):
        with pytest.raises(AuthenticationFailedError):
            service.refresh(bogus)

    with pytest.raises(RateLimitedError) as excinfo:
        service.refresh(bogus)
    assert 1 <= excinfo.value.retry_after <= 60

    # A different token has its own budget.
    service.refresh(RefreshIn(refresh_token=pair.refresh_token))

    # The window resets.
    limiter_time.value += 60
    with pytest.raises(AuthenticationFailedError):
        service.refresh(bogus)


def test_reuse_charges_a_penalty(service):
    pair = service.issue(IssueIn(subject="u1"))
    service.refresh(RefreshIn(refresh_token=pair.refresh_token))  # 1 attempt
    with pytest.raises(AuthenticationFailedError):
        service.refresh(RefreshIn(refresh_token=pair.refresh_token))  # 2 + penalty 5
    with pytest.raises(RateLimitedError):
        service.refresh(RefreshIn(refresh_token=pair.refresh_token))


def test_storage_outage_propagates(service, store):
    pair = service.issue(IssueIn(subject="u1"))

    def _down(*args, **kwargs):
        raise StorageUnavailableError()

    store.find_by_hash = _down
    with pytest.raises(StorageUnavailableError):
        service.refresh(RefreshIn(refresh_token=pair.refresh_token))


# -------------------------------- Logout ---------------------------------- #
def test_logout_revokes_lineage_and_denylists_access_token(service):
    pair1 = service.issue(IssueIn(subject="u1"))
    pair2 = service.refresh(RefreshIn(refresh_token=pair1.refresh_token))
    jti = service.access_tokens.get_jti(pair2.access_token)

    revoked = service.logout(
        LogoutIn(refresh_token=pair2.refresh_token, access_token=pair2.access_token)
    )

    assert revoked == 2
    assert service.denylist.is_revoked(jti) is True
    assert service.tokens.verify_token(pair2.refresh_token) is False


def test_logout_all_sessions(service):
    a = service.issue(IssueIn(subject="u1"))
    b = service.issue(IssueIn(subject="u1"))
    other = service.issue(IssueIn(subject="u2"))

    assert service.logout(LogoutIn(refresh_token=a.refresh_token, all_sessions=True)) == 2
    assert service.tokens.verify_token(b.refresh_token) is False
    assert service.tokens.verify_token(other.refresh_token) is True


def test_logout_unknown_refresh_token_fails(service):
    with pytest.raises(AuthenticationFailedError):
        service.logout(LogoutIn(refresh_token="missing"))


def test_logout_rejects_foreign_access_token(service):
    mine = service.issue(IssueIn(subject="u1"))
    theirs = service.issue(IssueIn(subject="u2"))
    with pytest.raises(AuthenticationFailedError):
        service.logout(LogoutIn(refresh_token=mine.refresh_token, access_token=theirs.access_token))
    # nothing was revoked
    assert service.tokens.verify_token(mine.refresh_token) is True


def test_logout_rejects_undecodable_access_token(service):
    pair = service.issue(IssueIn(subject="u1"))
    with pytest.raises(AuthenticationFailedError):
        service.logout(LogoutIn(refresh_token=pair.refresh_token, access_token="garbage"))
