# refreshguard/services/refresh_tokens/chain.py
from __future__ import annotations

import logging
from collections import deque

from refreshguard.services._shared.base import Clock, utc_now
from refreshguard.services._shared.ports.refresh_token_store import RefreshTokenStore
from refreshguard.services.refresh_tokens.dto import RefreshTokenRecord

log = logging.getLogger(__name__)


class ChainRevocationService:
    """
    Locate and revoke a whole rotation lineage.

    Lineage links are plain ids (``rotated_from``); walks keep a visited set
    so a corrupted store with a cycle cannot loop forever.
    """

    def __init__(self, store: RefreshTokenStore, *, clock: Clock | None = None) -> None:
        self.store = store
        self._clock = clock or utc_now

    def collect_chain(self, record: RefreshTokenRecord) -> list[RefreshTokenRecord]:
        """
        Return every record of ``record``'s lineage, root first.

        Ancestors are found by following ``rotated_from``; descendants by
        asking the store for children of every known node, breadth first.
        Records are returned in their current stored state.
        """
        start = self.store.get(record.id) or record
        visited = {start.id}

        ancestors: list[RefreshTokenRecord] = []
        current = start
        while current.rotated_from is not None and current.rotated_from not in visited:
            parent = self.store.get(current.rotated_from)
            if parent is None:
                break
            visited.add(parent.id)
            ancestors.append(parent)
            current = parent

        chain = list(reversed(ancestors))
        chain.append(start)

        queue = deque(chain)
        while queue:
            node = queue.popleft()
            for child in self.store.find_children(node.id):
                if child.id in visited:
                    continue
                visited.add(child.id)
                chain.append(child)
                queue.append(child)
        return chain

    def revoke_chain(self, record: RefreshTokenRecord) -> int:
        """
        Revoke every record of the lineage; return how many were newly revoked.

        Each batch is applied by one atomic ``store.revoke`` call. The lineage
        is then collected again: a successor committed by a rotation that won
        its compare-and-set just before the batch is picked up by the next
        pass. Rotation requires an unrevoked predecessor, so passes stop once
        a batch finds nothing new.
        """
        revoked_at = self._clock()
        seen: set[str] = set()
        total = 0
        while True:
            pending = [r.id for r in self.collect_chain(record) if r.id not in seen]
            if not pending:
                break
            seen.update(pending)
            total += self.store.revoke(pending, revoked_at=revoked_at)
        log.debug("Revoked %d record(s) across a lineage of %d", total, len(seen))
        return total
