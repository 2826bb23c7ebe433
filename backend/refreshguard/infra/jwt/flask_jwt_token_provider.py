# refreshguard/infra/jwt/flask_jwt_token_provider.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, cast

from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from refreshguard.services._shared.ports.token_provider import TokenProvider


@dataclass(slots=True)
class JWTTokenProvider(TokenProvider):
    """
    Access-token adapter for Flask-JWT-Extended.

    Decoding accepts expired tokens (logout may denylist a token that is
    about to expire) and turns every library failure into ``ValueError``.

    .. note::
       Requires an active Flask app context with proper JWT settings.
    """

    def create_access_token(
        self,
        *,
        identity: str | int,
        additional_claims: dict[str, Any] | None = None,
        expires_delta: timedelta | None = None,
        fresh: bool = False,
    ) -> str:
        from flask_jwt_extended import create_access_token as _create_access

        return cast(
            str,
            _create_access(
                identity=str(identity),
                additional_claims=additional_claims or {},
                expires_delta=expires_delta,
                fresh=fresh,
            ),
        )

    def decode(self, token: str) -> dict[str, Any]:
        from flask_jwt_extended import decode_token

        try:
            claims = cast(dict[str, Any], decode_token(token, allow_expired=True))
        except (PyJWTError, JWTExtendedException) as exc:
            raise ValueError(f"Invalid access token: {exc.__class__.__name__}") from exc
        if claims.get("type") != "access":
            raise ValueError("Not an access token")
        return claims

    def get_jti(self, token: str) -> str:
        return cast(str, self.decode(token)["jti"])

    def get_subject(self, token: str) -> int | str:
        return cast(int | str, self.decode(token)["sub"])

    def get_expires_at(self, token: str) -> datetime:
        exp = int(self.decode(token)["exp"])
        return datetime.fromtimestamp(exp, tz=UTC)
