"""
guildmirror.engine.events — GatewayEvent and EventDispatcher
=============================================================

Every gateway callback the mirror cares about is normalized into a
:class:`GatewayEvent` and pushed onto one queue.  A single consumer loop
pops events in arrival order and calls the handler registered for the
event's kind.  Cogs never call services directly.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

__all__ = ["GatewayEventKind", "GatewayEvent", "EventDispatcher"]

logger = logging.getLogger(__name__)

Handler = Callable[["GatewayEvent"], Awaitable[None]]


class GatewayEventKind(enum.StrEnum):
    READY = "ready"
    MESSAGE_CREATE = "message_create"
    PRESENCE_UPDATE = "presence_update"
    VOICE_STATE_UPDATE = "voice_state_update"
    STRUCTURE_CHANGED = "structure_changed"


# ---------------------------------------------------------------------------
# Event envelope
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GatewayEvent:
    """One normalized gateway event.

    ``payload`` carries the discord.py objects the handler needs
    (``message``, ``before``/``after``, ``member``); ``reason`` names the
    raw gateway event for logging.
    """

    kind: GatewayEventKind
    payload: dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class EventDispatcher:
    """Dispatch table from :class:`GatewayEventKind` to one async handler."""

    def __init__(self) -> None:
        self._handlers: dict[GatewayEventKind, Handler] = {}
        self._queue: asyncio.Queue[GatewayEvent | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    def register(self, kind: GatewayEventKind, handler: Handler) -> None:
        self._handlers[kind] = handler
        logger.debug("Registered handler for %s", kind)

    def publish(self, event: GatewayEvent) -> None:
        """Enqueue *event*; never blocks the gateway callback."""
        if event.kind not in self._handlers:
            logger.debug("No handler for %s (%s), dropping", event.kind, event.reason)
            return
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def dispatch(self, event: GatewayEvent) -> None:
        """Run the handler for *event*, logging (not raising) its failure."""
        handler = self._handlers.get(event.kind)
        if handler is None:
            return
        try:
            await handler(event)
        except Exception:
            logger.exception("Handler for %s (%s) failed", event.kind, event.reason)

    async def run(self) -> None:
        """Consume the queue until :meth:`stop` enqueues the sentinel."""
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name="gateway-event-dispatcher",
            )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._queue.put_nowait(None)
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except TimeoutError:
            self._task.cancel()
        self._task = None
