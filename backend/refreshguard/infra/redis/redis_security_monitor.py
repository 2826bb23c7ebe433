from __future__ import annotations

import logging
from typing import cast

import redis  # type: ignore[import-untyped]

from refreshguard.infra.redis._support import unavailable_on_error
from refreshguard.services._shared.ports.security_monitor import LoggingSecurityMonitor
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord


class RedisSecurityMonitor(LoggingSecurityMonitor):
    """
    Logging monitor that also tracks refresh velocity per subject.

    Every rotation bumps ``security:token_refresh:{subject}`` (a counter that
    lives ``window`` seconds). Crossing ``threshold`` inside one window logs a
    ``security.suspicious_refresh`` warning.

    :param r: A Redis client.
    :param threshold: Refreshes per window above which a subject is suspicious.
    :param window: Counter lifetime in seconds.
    """

    def __init__(
        self,
        r: redis.Redis,
        *,
        threshold: int = 10,
        window: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger)
        self.r = r
        self.threshold = threshold
        self.window = window

    @staticmethod
    def _k(subject: str) -> str:
        return f"security:token_refresh:{subject}"

    @unavailable_on_error
    def token_rotated(self, old: RefreshTokenRecord, new: RefreshTokenRecord) -> None:
        super().token_rotated(old, new)
        p = self.r.pipeline(transaction=True)
        p.incr(self._k(new.subject))
        p.expire(self._k(new.subject), self.window, nx=True)
        count = cast(int, p.execute()[0])
        if count > self.threshold:
            self._log.warning(
                "Suspicious refresh velocity (%d in %ds)",
                count,
                self.window,
                extra={"event_type": "security.suspicious_refresh", "subject": new.subject},
            )

    @unavailable_on_error
    def is_suspicious(self, subject: str) -> bool:
        """Return True while ``subject`` is above the threshold in the current window."""
        raw = self.r.get(self._k(subject))
        return raw is not None and int(raw) > self.threshold
