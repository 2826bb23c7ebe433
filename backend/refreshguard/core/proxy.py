"""Trusted reverse-proxy configuration.

The client IP recorded on every refresh token comes from
``request.remote_addr``. Behind a load balancer that is the proxy's address
unless ``X-Forwarded-For`` is honoured, so ProxyFix is applied for exactly
``PROXY_FIX_HOPS`` trusted hops. Trusting more hops than really exist lets
clients spoof their recorded address.
"""

from __future__ import annotations

import logging

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

log = logging.getLogger(__name__)


def init_app(app: Flask) -> None:
    """Wrap ``app.wsgi_app`` with ProxyFix unless ``USE_PROXYFIX`` is off."""
    if not app.config.get("USE_PROXYFIX", True):
        return
    hops = int(app.config.get("PROXY_FIX_HOPS", 1))
    if hops < 1:
        raise ValueError("PROXY_FIX_HOPS must be at least 1 when USE_PROXYFIX is enabled.")
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops, x_prefix=hops)
    log.debug("ProxyFix enabled for %d hop(s)", hops)
