"""Expose the application factory at package level.

Provide convenient access to :func:`refreshguard.factory.create_app` so
callers can ``from refreshguard import create_app``.
"""

from __future__ import annotations

from .factory import create_app

__all__ = ["create_app"]
