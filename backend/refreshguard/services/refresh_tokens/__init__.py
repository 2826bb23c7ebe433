"""Refresh-token security core.

Modules: :mod:`.dto` (records and statuses), :mod:`.hasher`,
:mod:`.rotation` (create/inspect/rotate), :mod:`.chain` (lineage walk and
cascading revocation) and :mod:`.service` (the facade).
"""
