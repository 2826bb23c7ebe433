# tests/unit/services/test_refresh_token_service.py
"""
Behavioural tests for :class:`RefreshTokenService` over the in-memory store.

Covers creation, verification order, single-use rotation, reuse-triggered
chain revocation and the monitor notifications each path emits.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta

import pytest
from refreshguard.services._shared.errors import (
    ConflictError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenReusedError,
    TokenRevokedError,
)
from refreshguard.services._shared.ports import InMemoryRefreshTokenStore
from refreshguard.services.refresh_tokens.dto import TokenStatus
from refreshguard.services.refresh_tokens.service import RefreshTokenService


class ExplodingMonitor:
    """Monitor whose every notification fails."""

    def __getattr__(self, name):
        def _boom(*args, **kwargs):
            raise RuntimeError(f"monitor down ({name})")

        return _boom


# ------------------------------ Lifecycle --------------------------------- #
class TestTokenLifecycle:
    def test_created_token_verifies(self, tokens):
        tokens.create_token("u1", "R1", ttl=3600)
        assert tokens.verify_token("R1") is True

    def test_rotation_invalidates_predecessor(self, tokens):
        r1 = tokens.create_token("u1", "R1", ttl=3600)
        tokens.rotate_token(r1, "R2")
        assert tokens.verify_token("R1") is False
        # R1's replay revoked the whole lineage, R2 included
        assert tokens.check_token("R2") is TokenStatus.REVOKED

    def test_rotation_without_replay_keeps_successor_valid(self, tokens):
        r1 = tokens.create_token("u1", "R1", ttl=3600)
        tokens.rotate_token(r1, "R2")
        assert tokens.verify_token("R2") is True

    def test_replaying_root_revokes_chain(self, tokens):
        r1 = tokens.create_token("u1", "R1", ttl=3600)
        r2 = tokens.rotate_token(r1, "R2")
        tokens.rotate_token(r2, "R3")

        assert tokens.verify_token("R1") is False
        assert tokens.verify_token("R3") is False

    def test_zero_ttl_is_expired_immediately(self, tokens):
        tokens.create_token("u1", "R0", ttl=0)
        assert tokens.check_token("R0") is TokenStatus.EXPIRED
        assert tokens.verify_token("R0") is False

    def test_lone_surrogate_token_is_not_found(self, tokens):
        # json.loads('"\\ud800abc"') yields an unpaired surrogate
        assert tokens.check_token("\ud800abc") is TokenStatus.NOT_FOUND
        assert tokens.verify_token("\ud800abc") is False


# ------------------------------ Properties -------------------------------- #
class TestProperties:
    def test_plaintext_is_never_stored(self, tokens, store):
        record = tokens.create_token("u1", "super-secret-plaintext", ttl=60)
        stored = store.get(record.id)
        assert stored is not None
        assert "super-secret-plaintext" not in asdict(stored).values()
        assert stored.token_hash == tokens.hasher.hash("super-secret-plaintext")

    def test_rotated_token_never_verifies_again(self, tokens):
        r1 = tokens.create_token("u1", "R1", ttl=60)
        tokens.rotate_token(r1, "R2")
        assert tokens.verify_token("R1") is False
        assert tokens.verify_token("R1") is False

    def test_reuse_cascades_to_all_descendants(self, tokens, store):
        a = tokens.create_token("u1", "A", ttl=60)
        b = tokens.rotate_token(a, "B")
        c = tokens.rotate_token(b, "C")

        assert tokens.check_token("A") is TokenStatus.REUSED
        assert tokens.verify_token("B") is False
        assert tokens.verify_token("C") is False
        assert all(store.get(r.id).is_revoked for r in (a, b, c))

    def test_expiry_wins_over_revocation(self, tokens, clock):
        record = tokens.create_token("u1", "R1", ttl=60)
        tokens.revoke_token_chain(record)
        clock.advance(61)
        assert tokens.check_token("R1") is TokenStatus.EXPIRED

    def test_rotated_flag_is_directional(self, tokens, store):
        old = tokens.create_token("u1", "R1", ttl=60)
        new = tokens.rotate_token(old, "R2")
        assert store.get(old.id).rotated_at is not None
        assert store.get(new.id).rotated_at is None
        assert new.rotated_from == old.id


# ---------------------------- Verification -------------------------------- #
class TestCheckToken:
    def test_unknown_token_is_not_found(self, tokens, monitor):
        assert tokens.check_token("nope") is TokenStatus.NOT_FOUND
        event = monitor.events[-1]
        assert event.kind == "rejected"
        assert event.detail["reason"] is TokenStatus.NOT_FOUND
        assert event.detail["token_hash"] == tokens.hasher.hash("nope")

    def test_expiry_boundary_counts_as_expired(self, tokens, clock):
        tokens.create_token("u1", "R1", ttl=60)
        clock.advance(59)
        assert tokens.verify_token("R1") is True
        clock.advance(1)
        assert tokens.check_token("R1") is TokenStatus.EXPIRED

    def test_revoked_token_is_reported_revoked(self, tokens):
        record = tokens.create_token("u1", "R1", ttl=60)
        tokens.revoke_token_chain(record)
        assert tokens.check_token("R1") is TokenStatus.REVOKED

    def test_reuse_is_checked_before_expiry(self, tokens, clock, monitor):
        r1 = tokens.create_token("u1", "R1", ttl=60)
        tokens.rotate_token(r1, "R2")
        clock.advance(3600)

        assert tokens.check_token("R1") is TokenStatus.REUSED
        assert "reuse_detected" in monitor.kinds()
        assert "chain_revoked" in monitor.kinds()

    def test_verification_has_no_side_effects_on_valid_tokens(self, tokens, store):
        record = tokens.create_token("u1", "R1", ttl=60)
        for _ in range(3):
            assert tokens.verify_token("R1") is True
        assert store.get(record.id) == record

    def test_find_by_plaintext_token(self, tokens):
        record = tokens.create_token("u1", "R1", ttl=60)
        assert tokens.find_by_plaintext_token("R1") == record
        assert tokens.find_by_plaintext_token("R2") is None


# ------------------------------ Creation ---------------------------------- #
class TestCreateToken:
    def test_defaults_to_seven_day_lifetime(self, tokens, clock):
        record = tokens.create_token("u1", "R1")
        assert record.issued_at == clock.now
        assert record.valid_until == clock.now + timedelta(days=7)

    def test_accepts_timedelta_ttl_and_provenance(self, tokens):
        record = tokens.create_token(
            "u1", "R1", ttl=timedelta(minutes=5), ip_address="198.51.100.1", user_agent="ua/1"
        )
        assert record.ip_address == "198.51.100.1"
        assert record.user_agent == "ua/1"
        assert record.rotated_from is None

    def test_duplicate_plaintext_conflicts(self, tokens):
        tokens.create_token("u1", "R1", ttl=60)
        with pytest.raises(ConflictError):
            tokens.create_token("u2", "R1", ttl=60)

    @pytest.mark.parametrize("subject, plaintext", [("", "R1"), ("u1", "")])
    def test_rejects_empty_input(self, tokens, subject, plaintext):
        with pytest.raises(ValueError):
            tokens.create_token(subject, plaintext, ttl=60)

    def test_rejects_negative_ttl(self, tokens):
        with pytest.raises(ValueError):
            tokens.create_token("u1", "R1", ttl=-1)

    def test_notifies_issued(self, tokens, monitor):
        record = tokens.create_token("u1", "R1", ttl=60)
        assert monitor.events[0].kind == "issued"
        assert monitor.events[0].record == record


# ------------------------------ Rotation ---------------------------------- #
class TestRotateToken:
    def test_successor_inherits_expiry_by_default(self, tokens, clock):
        old = tokens.create_token("u1", "R1", ttl=600)
        clock.advance(120)
        new = tokens.rotate_token(old, "R2")
        assert new.issued_at == clock.now
        assert new.valid_until == old.valid_until
        assert new.subject == old.subject

    def test_extend_on_rotation_grants_fresh_lifetime(self, store, monitor, clock):
        service = RefreshTokenService(
            store=store,
            monitor=monitor,
            clock=clock,
            default_ttl=600,
            extend_on_rotation=True,
        )
        old = service.create_token("u1", "R1")
        clock.advance(120)
        new = service.rotate_token(old, "R2")
        assert new.valid_until == clock.now + timedelta(seconds=600)

    def test_successor_records_its_own_provenance(self, tokens):
        old = tokens.create_token("u1", "R1", ttl=60, ip_address="10.0.0.1")
        new = tokens.rotate_token(old, "R2", ip_address="10.0.0.2", user_agent="ua/2")
        assert new.ip_address == "10.0.0.2"
        assert new.user_agent == "ua/2"

    def test_rotating_a_stale_snapshot_is_reuse(self, tokens, store, monitor):
        old = tokens.create_token("u1", "R1", ttl=60)
        first = tokens.rotate_token(old, "R2")

        # ``old`` still says "not rotated"; the store arbitrates.
        with pytest.raises(TokenReusedError):
            tokens.rotate_token(old, "R3")

        assert store.get(first.id).is_revoked
        assert store.find_by_hash(tokens.hasher.hash("R3")) is None
        assert "reuse_detected" in monitor.kinds()

    def test_rotating_expired_record_fails(self, tokens, clock, monitor):
        old = tokens.create_token("u1", "R1", ttl=60)
        clock.advance(60)
        with pytest.raises(TokenExpiredError):
            tokens.rotate_token(old, "R2")
        assert monitor.events[-1].detail["reason"] is TokenStatus.EXPIRED

    def test_rotating_revoked_record_fails(self, tokens, store):
        old = tokens.create_token("u1", "R1", ttl=60)
        tokens.revoke_token_chain(old)
        with pytest.raises(TokenRevokedError):
            tokens.rotate_token(store.get(old.id), "R2")

    def test_rotating_vanished_record_fails(self, tokens, store, clock):
        old = tokens.create_token("u1", "R1", ttl=60)
        # the snapshot is still valid in memory, but the row is gone
        other = InMemoryRefreshTokenStore()
        detached = RefreshTokenService(store=other, clock=clock)
        with pytest.raises(TokenNotFoundError):
            detached.rotate_token(old, "R2")

    def test_notifies_rotated(self, tokens, monitor):
        old = tokens.create_token("u1", "R1", ttl=60)
        new = tokens.rotate_token(old, "R2")
        event = monitor.events[-1]
        assert event.kind == "rotated"
        assert event.record == new
        assert event.detail == {"old_id": old.id}


class TestRefresh:
    def test_refresh_rotates_in_one_call(self, tokens, store):
        root = tokens.create_token("u1", "R1", ttl=60)
        successor = tokens.refresh("R1", "R2")
        assert successor.rotated_from == root.id
        assert store.get(root.id).is_rotated

    @pytest.mark.parametrize(
        "prepare, error",
        [
            (lambda t, c: None, TokenNotFoundError),
            (lambda t, c: t.create_token("u1", "R1", ttl=0), TokenExpiredError),
            (lambda t, c: t.revoke_token_chain(t.create_token("u1", "R1", ttl=60)), TokenRevokedError),
            (lambda t, c: t.rotate_token(t.create_token("u1", "R1", ttl=60), "Rx"), TokenReusedError),
        ],
    )
    def test_refresh_raises_specific_reason(self, tokens, clock, prepare, error):
        prepare(tokens, clock)
        with pytest.raises(error):
            tokens.refresh("R1", "R2")


# ----------------------------- Revocation --------------------------------- #
class TestRevocation:
    def test_get_rotation_chain_is_root_first(self, tokens):
        a = tokens.create_token("u1", "A", ttl=60)
        b = tokens.rotate_token(a, "B")
        c = tokens.rotate_token(b, "C")
        assert [r.id for r in tokens.get_rotation_chain(b)] == [a.id, b.id, c.id]

    def test_revoke_token_chain_counts_new_revocations(self, tokens, monitor):
        a = tokens.create_token("u1", "A", ttl=60)
        b = tokens.rotate_token(a, "B")
        assert tokens.revoke_token_chain(b) == 2
        assert tokens.revoke_token_chain(b) == 0
        assert monitor.events[-1].kind == "chain_revoked"

    def test_revoke_all_for_subject_leaves_others(self, tokens):
        tokens.create_token("u1", "A", ttl=60)
        tokens.create_token("u1", "B", ttl=60)
        tokens.create_token("u2", "C", ttl=60)

        assert tokens.revoke_all_for_subject("u1") == 2
        assert tokens.verify_token("A") is False
        assert tokens.verify_token("B") is False
        assert tokens.verify_token("C") is True

    def test_purge_expired_removes_only_expired(self, tokens, clock, store):
        old = tokens.create_token("u1", "old", ttl=10)
        fresh = tokens.create_token("u1", "fresh", ttl=3600)
        clock.advance(11)
        assert tokens.purge_expired() == 1
        assert store.get(old.id) is None
        assert store.get(fresh.id) is not None


# ------------------------------ Monitor ----------------------------------- #
class TestMonitorFailures:
    def test_failing_monitor_never_changes_outcome(self, store, clock):
        service = RefreshTokenService(store=store, monitor=ExplodingMonitor(), clock=clock)
        r1 = service.create_token("u1", "R1", ttl=60)
        r2 = service.rotate_token(r1, "R2")

        assert service.check_token("R1") is TokenStatus.REUSED
        assert store.get(r2.id).is_revoked
        assert service.verify_token("unknown") is False

    def test_failing_monitor_is_logged(self, store, clock, caplog):
        service = RefreshTokenService(store=store, monitor=ExplodingMonitor(), clock=clock)
        with caplog.at_level("ERROR"):
            service.create_token("u1", "R1", ttl=60)
        assert "Security monitor failed on token_issued" in caplog.text
