"""Persistence-layer access for the refresh-token table."""

from __future__ import annotations

from refreshguard.repositories.base import BaseRepository, apply_sorting
from refreshguard.repositories.refresh_token import RefreshTokenRepository

__all__ = ["BaseRepository", "RefreshTokenRepository", "apply_sorting"]
