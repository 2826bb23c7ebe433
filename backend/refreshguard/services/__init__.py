"""Service layer.

Sub-packages
------------
- ``_shared``: service base class, framework-agnostic errors and the ports
  (store, rate limiter, security monitor, denylist, token signer).
- ``refresh_tokens``: the refresh-token core (hasher, rotation engine,
  chain revocation and the :class:`RefreshTokenService` facade).
- ``auth``: the refresh and logout use cases built on top of the core.

Import from the concrete modules; this package deliberately re-exports
nothing so that ports and DTOs can import each other without cycles.
"""
