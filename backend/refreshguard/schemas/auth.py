"""Refresh-token endpoint Marshmallow schemas."""

from __future__ import annotations

from marshmallow import Schema, fields, validate

# token_urlsafe(48) yields 64 chars; leave headroom for other generators.
_TOKEN_LENGTH = validate.Length(min=1, max=512)


class RefreshSchema(Schema):
    """Input payload for rotating a refresh token."""

    refresh_token = fields.String(required=True, validate=_TOKEN_LENGTH)


class LogoutSchema(Schema):
    """Input payload for revoking a refresh-token lineage."""

    refresh_token = fields.String(required=True, validate=_TOKEN_LENGTH)
    access_token = fields.String(load_default=None, validate=validate.Length(max=4096))
    all_sessions = fields.Boolean(load_default=False)


class TokenPairSchema(Schema):
    """Response payload with a fresh access/refresh pair."""

    access_token = fields.String(required=True)
    refresh_token = fields.String(required=True)
    expires_in = fields.Integer(required=True)
    token_type = fields.String(load_default="Bearer")


class WhoAmISchema(Schema):
    """Response payload exposing the identity behind an access token."""

    subject = fields.String(required=True)
    fresh = fields.Boolean(load_default=False)
