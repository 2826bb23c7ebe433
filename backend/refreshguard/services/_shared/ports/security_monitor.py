from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord, TokenStatus

log = logging.getLogger("refreshguard.security")


class SecurityMonitor(Protocol):
    """
    Sink for security-relevant token events.

    Notifications are fire-and-forget: callers catch and log any exception
    raised here and never let it change an authentication outcome.
    """

    def token_issued(self, record: RefreshTokenRecord) -> None: ...

    def token_rotated(self, old: RefreshTokenRecord, new: RefreshTokenRecord) -> None: ...

    def token_reuse_detected(self, record: RefreshTokenRecord) -> None: ...

    def token_chain_revoked(self, record: RefreshTokenRecord, revoked: int) -> None: ...

    def token_rejected(
        self,
        reason: TokenStatus,
        *,
        token_hash: str,
        record: RefreshTokenRecord | None = None,
    ) -> None: ...


def _record_extra(record: RefreshTokenRecord | None) -> dict[str, Any]:
    if record is None:
        return {}
    return {
        "token_id": record.id,
        "subject": record.subject,
        "ip_address": record.ip_address,
        "user_agent": record.user_agent,
    }


class LoggingSecurityMonitor(SecurityMonitor):
    """Emit one structured log line per event (JSON via the app formatter)."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or log

    def token_issued(self, record: RefreshTokenRecord) -> None:
        self._log.info(
            "Refresh token issued",
            extra={"event_type": "auth.token_issued", **_record_extra(record)},
        )

    def token_rotated(self, old: RefreshTokenRecord, new: RefreshTokenRecord) -> None:
        self._log.info(
            "Refresh token rotated from %s",
            old.id,
            extra={"event_type": "auth.token_refresh", **_record_extra(new)},
        )

    def token_reuse_detected(self, record: RefreshTokenRecord) -> None:
        self._log.critical(
            "Refresh token reuse detected",
            extra={"event_type": "auth.token_reuse", **_record_extra(record)},
        )

    def token_chain_revoked(self, record: RefreshTokenRecord, revoked: int) -> None:
        self._log.warning(
            "Refresh token chain revoked",
            extra={
                "event_type": "auth.token_chain_revoked",
                "revoked": revoked,
                **_record_extra(record),
            },
        )

    def token_rejected(
        self,
        reason: TokenStatus,
        *,
        token_hash: str,
        record: RefreshTokenRecord | None = None,
    ) -> None:
        # Only a short digest prefix identifies unknown tokens.
        self._log.warning(
            "Refresh token rejected (hash %s...)",
            token_hash[:12],
            extra={
                "event_type": "auth.token_rejected",
                "reason": reason.value,
                **_record_extra(record),
            },
        )


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    """Captured notification, for assertions in tests."""

    kind: str
    record: RefreshTokenRecord | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class InMemorySecurityMonitor(SecurityMonitor):
    """Record every notification in order."""

    def __init__(self) -> None:
        self.events: list[SecurityEvent] = []
        self._lock = threading.Lock()

    def _add(self, event: SecurityEvent) -> None:
        with self._lock:
            self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def token_issued(self, record: RefreshTokenRecord) -> None:
        self._add(SecurityEvent("issued", record))

    def token_rotated(self, old: RefreshTokenRecord, new: RefreshTokenRecord) -> None:
        self._add(SecurityEvent("rotated", new, {"old_id": old.id}))

    def token_reuse_detected(self, record: RefreshTokenRecord) -> None:
        self._add(SecurityEvent("reuse_detected", record))

    def token_chain_revoked(self, record: RefreshTokenRecord, revoked: int) -> None:
        self._add(SecurityEvent("chain_revoked", record, {"revoked": revoked}))

    def token_rejected(
        self,
        reason: TokenStatus,
        *,
        token_hash: str,
        record: RefreshTokenRecord | None = None,
    ) -> None:
        self._add(SecurityEvent("rejected", record, {"reason": reason, "token_hash": token_hash}))
