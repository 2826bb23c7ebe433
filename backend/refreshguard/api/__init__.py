"""API package: mounts each versioned blueprint registry on the app."""

from __future__ import annotations

from collections.abc import Iterable

from flask import Blueprint, Flask


def register_blueprint_group(
    app: Flask,
    *,
    base_prefix: str,
    entries: Iterable[tuple[Blueprint, str]],
) -> None:
    """Register ``(blueprint, relative_prefix)`` pairs beneath ``base_prefix``.

    An empty relative prefix mounts the blueprint at the version root
    (``/api/v1/health``); others extend it (``/api/v1/auth/refresh``).
    """
    for bp, rel_prefix in entries:
        parts = [base_prefix.strip("/"), rel_prefix.strip("/")]
        app.register_blueprint(bp, url_prefix="/" + "/".join(p for p in parts if p))


def init_app(app: Flask) -> None:
    """Register every API version on ``app``."""
    from refreshguard.api.v1 import API_VERSION as V1
    from refreshguard.api.v1 import REGISTRY as V1_REGISTRY

    api_base = app.config.get("API_BASE_PREFIX", "/api")
    register_blueprint_group(app, base_prefix=f"{api_base}/{V1}", entries=V1_REGISTRY)


__all__ = ["init_app", "register_blueprint_group"]
