"""Convenience exports for application schemas."""

from __future__ import annotations

from .auth import LogoutSchema, RefreshSchema, TokenPairSchema, WhoAmISchema

__all__ = [
    "LogoutSchema",
    "RefreshSchema",
    "TokenPairSchema",
    "WhoAmISchema",
]
