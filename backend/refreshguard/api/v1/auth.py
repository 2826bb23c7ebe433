"""Refresh-token endpoints using the service layer."""

from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import get_jwt, get_jwt_identity

from refreshguard.api.deps import client_context, json_response, no_store, require_auth, timing
from refreshguard.core.container import get_services
from refreshguard.schemas import LogoutSchema, RefreshSchema, TokenPairSchema, WhoAmISchema
from refreshguard.services._shared.errors import ServiceError
from refreshguard.services.auth.dto import LogoutIn, RefreshIn

bp = Blueprint("auth", __name__, url_prefix="/auth")

refresh_schema = RefreshSchema()
logout_schema = LogoutSchema()
token_schema = TokenPairSchema()
whoami_schema = WhoAmISchema()


@bp.post("/refresh")
@timing
def refresh():
    """Rotate the presented refresh token and return a new token pair."""

    data = refresh_schema.load(request.get_json(silent=True) or {})
    ctx = client_context()
    service = get_services().auth(ctx)
    try:
        pair = service.refresh(
            RefreshIn(
                refresh_token=data["refresh_token"],
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
        )
    except ServiceError as exc:
        raise service.translate_exceptions(exc) from exc
    return no_store(json_response({"data": token_schema.dump(pair)}))


@bp.post("/logout")
@timing
def logout():
    """Revoke the lineage of a refresh token (or every session of its owner)."""

    data = logout_schema.load(request.get_json(silent=True) or {})
    service = get_services().auth(client_context())
    try:
        service.logout(
            LogoutIn(
                refresh_token=data["refresh_token"],
                access_token=data["access_token"],
                all_sessions=data["all_sessions"],
            )
        )
    except ServiceError as exc:
        raise service.translate_exceptions(exc) from exc
    return "", 204


@bp.get("/whoami")
@require_auth
@timing
def whoami():
    """Return the subject of the presented access token."""

    claims = get_jwt() or {}
    body = {"data": whoami_schema.dump({"subject": get_jwt_identity(), **claims})}
    return json_response(body)
