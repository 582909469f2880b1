"""
guildmirror.services.object_store — Hierarchical Object/State Store
====================================================================

**Why this file exists:**
The mirror writes into a hierarchical key-value store: *objects* describe
nodes (container or typed leaf), *states* hold leaf values with an
acknowledgement flag.  This module is that store, backed by the two
SQLAlchemy tables in :mod:`guildmirror.database.models`.

Paths are dot-separated; a node's subtree is every path that starts with
``<path>.``.  All public methods are coroutines that ship the synchronous
SQLAlchemy work to a thread via :func:`run_db`.

Subscribers
-----------
``on_state_change`` callbacks receive a :class:`StateChange` for every
state write that actually changed something.  ``on_object_change``
callbacks receive an :class:`ObjectChange` when a node's ``custom`` config
is set.  Writes from another process (the HTTP API) arrive through
:mod:`guildmirror.services.store_notify` and are re-emitted via
:meth:`ObjectStore.relay_state_change` / :meth:`ObjectStore.relay_object_change`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, or_, select

from guildmirror.database.engine import get_session, run_db
from guildmirror.database.models import StoreObject, StoreState
from guildmirror.services.store_notify import (
    OBJECTS_CHANNEL,
    STATES_CHANNEL,
    notify_before_commit,
    state_payload,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from guildmirror.engine.nodes import NodeDefinition

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class StateValue:
    val: Any
    ack: bool
    ts: int
    lc: int


@dataclass(frozen=True, slots=True)
class StateChange:
    path: str
    val: Any
    ack: bool


@dataclass(frozen=True, slots=True)
class ObjectChange:
    path: str
    custom: dict[str, Any] | None


StateListener = Callable[[StateChange], Awaitable[None]]
ObjectListener = Callable[[ObjectChange], Awaitable[None]]


def _subtree_filter(column, path: str):
    return or_(column == path, column.startswith(path + ".", autoescape=True))


class ObjectStore:
    """SQLAlchemy-backed hierarchical store.

    Parameters
    ----------
    engine:
        SQLAlchemy engine for both tables.
    notify:
        When True, every write also queues a PostgreSQL NOTIFY so another
        process can pick it up.  The HTTP API sets this; the bot does not.
    """

    def __init__(self, engine: Engine, *, notify: bool = False) -> None:
        self._engine = engine
        self._notify = notify
        self._state_listeners: list[StateListener] = []
        self._object_listeners: list[ObjectListener] = []

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_object_change(self, listener: ObjectListener) -> None:
        self._object_listeners.append(listener)

    async def _emit_state(self, change: StateChange) -> None:
        for listener in list(self._state_listeners):
            try:
                await listener(change)
            except Exception:
                logger.exception("State listener failed for %s", change.path)

    async def _emit_object(self, change: ObjectChange) -> None:
        for listener in list(self._object_listeners):
            try:
                await listener(change)
            except Exception:
                logger.exception("Object listener failed for %s", change.path)

    async def relay_state_change(
        self, path: str, written: tuple[Any, bool] | None = None,
    ) -> None:
        """Re-emit a state write made by another process.

        ``written`` is the ``(val, ack)`` pair carried by the notification.
        Without it (oversized payloads) the current row is re-read.
        """
        if written is not None:
            val, ack = written
            await self._emit_state(StateChange(path, val, ack))
            return
        state = await self.get_state(path)
        if state is None:
            return
        await self._emit_state(StateChange(path, state.val, state.ack))

    async def relay_object_change(self, path: str) -> None:
        obj = await self.get_object(path)
        await self._emit_object(ObjectChange(path, obj.get("custom") if obj else None))

    # -------------------------------------------------------------------
    # Objects (synchronous bodies)
    # -------------------------------------------------------------------
    def _get_object_sync(self, path: str) -> dict[str, Any] | None:
        with get_session(self._engine) as session:
            row = session.get(StoreObject, path)
            if row is None:
                return None
            return {
                "id": row.id,
                "type": row.type,
                "common": dict(row.common or {}),
                "native": dict(row.native or {}),
                "custom": dict(row.custom) if row.custom is not None else None,
            }

    def _extend_object_sync(self, path: str, definition: NodeDefinition) -> None:
        with get_session(self._engine) as session:
            row = session.get(StoreObject, path)
            if row is None:
                session.add(StoreObject(
                    id=path,
                    type=definition.kind,
                    common=definition.common(),
                    native=definition.native_dict(),
                ))
                return
            row.type = definition.kind
            row.common = {**(row.common or {}), **definition.common()}
            row.native = {**(row.native or {}), **definition.native_dict()}

    def _delete_object_sync(self, path: str, recursive: bool) -> int:
        with get_session(self._engine) as session:
            if recursive:
                obj_filter = _subtree_filter(StoreObject.id, path)
                state_filter = _subtree_filter(StoreState.id, path)
            else:
                obj_filter = StoreObject.id == path
                state_filter = StoreState.id == path
            result = session.execute(delete(StoreObject).where(obj_filter))
            session.execute(delete(StoreState).where(state_filter))
            return result.rowcount or 0

    def _list_objects_sync(self, prefix: str) -> list[str]:
        with get_session(self._engine) as session:
            stmt = select(StoreObject.id).where(_subtree_filter(StoreObject.id, prefix))
            return sorted(session.scalars(stmt).all())

    def _set_custom_sync(self, path: str, custom: dict[str, Any] | None) -> bool:
        with get_session(self._engine) as session:
            row = session.get(StoreObject, path)
            if row is None:
                return False
            row.custom = custom
            if self._notify:
                notify_before_commit(session, OBJECTS_CHANNEL, {"id": path})
            return True

    def _list_custom_sync(self) -> dict[str, dict[str, Any]]:
        with get_session(self._engine) as session:
            rows = session.execute(
                select(StoreObject.id, StoreObject.custom).where(StoreObject.custom.is_not(None))
            ).all()
            return {row.id: dict(row.custom) for row in rows if row.custom}

    # -------------------------------------------------------------------
    # States (synchronous bodies)
    # -------------------------------------------------------------------
    def _get_state_sync(self, path: str) -> StateValue | None:
        with get_session(self._engine) as session:
            row = session.get(StoreState, path)
            if row is None:
                return None
            return StateValue(val=row.val, ack=row.ack, ts=row.ts, lc=row.lc)

    def _set_state_sync(self, path: str, val: Any, ack: bool, only_changed: bool) -> bool:
        ts = now_ms()
        with get_session(self._engine) as session:
            row = session.get(StoreState, path)
            if row is None:
                session.add(StoreState(id=path, val=val, ack=ack, ts=ts, lc=ts))
            else:
                if only_changed and row.val == val and row.ack == ack:
                    return False
                if row.val != val:
                    row.lc = ts
                row.val = val
                row.ack = ack
                row.ts = ts
            if self._notify:
                notify_before_commit(session, STATES_CHANNEL, state_payload(path, val, ack))
            return True

    def _ack_if_unchanged_sync(self, path: str, val: Any) -> bool:
        with get_session(self._engine) as session:
            row = session.get(StoreState, path, with_for_update=True)
            if row is None or row.ack or row.val != val:
                return False
            row.ack = True
            row.ts = now_ms()
            if self._notify:
                notify_before_commit(session, STATES_CHANNEL, state_payload(path, val, True))
            return True

    # -------------------------------------------------------------------
    # Public async API
    # -------------------------------------------------------------------
    async def get_object(self, path: str) -> dict[str, Any] | None:
        return await run_db(self._get_object_sync, path)

    async def extend_object(self, path: str, definition: NodeDefinition) -> None:
        """Create *path* or merge *definition* into the existing node."""
        await run_db(self._extend_object_sync, path, definition)

    async def delete_object(self, path: str, *, recursive: bool = False) -> int:
        """Delete *path* (and its subtree when *recursive*); returns objects removed."""
        removed = await run_db(self._delete_object_sync, path, recursive)
        logger.debug("Deleted %s (recursive=%s): %d objects", path, recursive, removed)
        return removed

    async def list_objects(self, prefix: str) -> list[str]:
        """Return *prefix* and every node path beneath it, sorted."""
        return await run_db(self._list_objects_sync, prefix)

    async def set_custom(self, path: str, custom: dict[str, Any] | None) -> bool:
        written = await run_db(self._set_custom_sync, path, custom)
        if written:
            await self._emit_object(ObjectChange(path, custom))
        return written

    async def list_custom(self) -> dict[str, dict[str, Any]]:
        return await run_db(self._list_custom_sync)

    async def get_state(self, path: str) -> StateValue | None:
        return await run_db(self._get_state_sync, path)

    async def set_state(self, path: str, val: Any, *, ack: bool = False) -> None:
        await run_db(self._set_state_sync, path, val, ack, False)
        await self._emit_state(StateChange(path, val, ack))

    async def set_state_changed(self, path: str, val: Any, *, ack: bool = False) -> bool:
        """Write only if *val* or *ack* differ from the stored state."""
        written = await run_db(self._set_state_sync, path, val, ack, True)
        if written:
            await self._emit_state(StateChange(path, val, ack))
        return written

    async def ack_if_unchanged(self, path: str, val: Any) -> bool:
        """Acknowledge *path* only while it still holds *val* unacknowledged.

        A newer command written in the meantime is left alone so it still
        gets dispatched.
        """
        acked = await run_db(self._ack_if_unchanged_sync, path, val)
        if acked:
            await self._emit_state(StateChange(path, val, True))
        else:
            logger.debug("Not acking %s, value changed since dispatch", path)
        return acked
