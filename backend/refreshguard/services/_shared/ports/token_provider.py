from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Protocol


class TokenProvider(Protocol):
    """Port for signing and decoding short-lived access tokens."""

    def create_access_token(
        self,
        *,
        identity: int | str,
        additional_claims: dict[str, Any] | None = None,
        expires_delta: timedelta | None = None,
        fresh: bool = False,
    ) -> str: ...

    def decode(self, token: str) -> dict[str, Any]: ...

    def get_jti(self, token: str) -> str: ...

    def get_subject(self, token: str) -> int | str: ...

    def get_expires_at(self, token: str) -> datetime: ...


class StubTokenProvider(TokenProvider):
    """Deterministic token provider used in unit tests."""

    def __init__(self) -> None:
        self._seq = 0
        self._issued: dict[str, dict[str, Any]] = {}

    def create_access_token(
        self,
        *,
        identity: int | str,
        additional_claims: dict[str, Any] | None = None,
        expires_delta: timedelta | None = None,
        fresh: bool = False,
    ) -> str:
        self._seq += 1
        jti = f"jti-{self._seq}"
        token = f"access.{identity}.{jti}"
        payload: dict[str, Any] = {
            "sub": identity,
            "type": "access",
            "jti": jti,
            "fresh": bool(fresh),
            "exp": int((datetime.now(UTC) + (expires_delta or timedelta(minutes=15))).timestamp()),
        }
        if additional_claims:
            payload.update(additional_claims)
        self._issued[token] = payload
        return token

    def decode(self, token: str) -> dict[str, Any]:
        try:
            return self._issued[token]
        except KeyError as exc:
            raise ValueError("Unknown access token") from exc

    def get_jti(self, token: str) -> str:
        return str(self.decode(token)["jti"])

    def get_subject(self, token: str) -> int | str:
        subject = self.decode(token)["sub"]
        if isinstance(subject, int | str):
            return subject
        raise TypeError(f"Unexpected subject type: {type(subject)!r}")

    def get_expires_at(self, token: str) -> datetime:
        exp = int(self.decode(token)["exp"])
        return datetime.fromtimestamp(exp, tz=UTC)
