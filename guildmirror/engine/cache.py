"""
guildmirror.engine.cache — Write-Suppression Cache
===================================================

Two independent in-memory caches keyed by store path:

- **definition cache** — last :class:`NodeDefinition` written for a node
- **snapshot cache**   — last composite JSON value written to a ``json``-style
  leaf

Every writer goes through :meth:`WriteSuppressionCache.upsert_definition` /
:meth:`WriteSuppressionCache.upsert_snapshot`, so a reconciliation pass over
an unchanged graph costs zero store writes.

The cache is owned by one mirror instance and handed to its collaborators;
there is no module-level singleton.

Usage::

    cache = WriteSuppressionCache(store)
    written = await cache.upsert_definition(path, leaf("Tag", "text"))
    written = await cache.upsert_snapshot(json_path, {"id": "1", "tag": "x"})
    cache.invalidate_subtree(server_path)
"""

from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from guildmirror.engine.nodes import NodeDefinition
    from guildmirror.services.object_store import ObjectStore

logger = logging.getLogger(__name__)


class WriteSuppressionCache:
    """Skip store writes whose payload equals the last one written."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store
        self._definitions: dict[str, NodeDefinition] = {}
        self._snapshots: dict[str, Any] = {}

        # Counters let callers (and tests) observe how much work a pass did
        self.definition_writes = 0
        self.snapshot_writes = 0

    # -------------------------------------------------------------------
    # Upserts
    # -------------------------------------------------------------------
    async def upsert_definition(self, path: str, definition: NodeDefinition) -> bool:
        """Write *definition* to *path* unless it equals the cached one.

        The cache entry is only updated after the store write returns, so a
        failed write is retried on the next pass.
        """
        if self._definitions.get(path) == definition:
            return False

        await self._store.extend_object(path, definition)
        self._definitions[path] = definition
        self.definition_writes += 1
        return True

    async def upsert_snapshot(self, path: str, value: Any) -> bool:
        """Write *value* (serialized as JSON text) unless it equals the cached one."""
        if path in self._snapshots and self._snapshots[path] == value:
            return False

        await self._store.set_state(path, json.dumps(value, default=str), ack=True)
        self._snapshots[path] = copy.deepcopy(value)
        self.snapshot_writes += 1
        return True

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_definition(self, path: str) -> NodeDefinition | None:
        return self._definitions.get(path)

    def get_snapshot(self, path: str) -> Any:
        """Return a copy of the cached snapshot, or ``None``."""
        value = self._snapshots.get(path)
        return copy.deepcopy(value) if value is not None else None

    def has_definition(self, path: str) -> bool:
        return path in self._definitions

    def has_snapshot(self, path: str) -> bool:
        return path in self._snapshots

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def invalidate(self, path: str) -> None:
        self._definitions.pop(path, None)
        self._snapshots.pop(path, None)

    def invalidate_subtree(self, prefix: str) -> int:
        """Drop *prefix* and every entry beneath it from both caches.

        Returns the number of entries removed.
        """
        below = prefix + "."
        removed = 0
        for cache in (self._definitions, self._snapshots):
            stale = [p for p in cache if p == prefix or p.startswith(below)]
            for p in stale:
                del cache[p]
            removed += len(stale)
        if removed:
            logger.debug("Invalidated %d cache entries under %s", removed, prefix)
        return removed

    def reset_counters(self) -> None:
        self.definition_writes = 0
        self.snapshot_writes = 0

    def __len__(self) -> int:
        return len(self._definitions) + len(self._snapshots)
