"""
guildmirror.services.state_dispatcher — Own-State Write Routing
===============================================================

Subscribed to the object store.  Every *unacknowledged* write under the
mirror's namespace is a command from a store user:

    bot.status / bot.activityType / bot.activityName  → BotPresenceController
    …send / sendFile / sendReply / sendReaction        → OutboundCommandRouter
    …members.<m>.voiceDisconnect|ServerMute|ServerDeaf → VoiceActionHandler

A handler returning True gets the write acknowledged (same value,
``ack=True``), unless a newer command replaced the value while it ran.
Acknowledged writes are echoes of the mirror's own output
and are ignored.

Custom-config changes on ``.message`` leaves toggle text-command
forwarding in the :class:`TargetRegistry`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from guildmirror.services.bot_presence import BOT_KEYS

if TYPE_CHECKING:
    from guildmirror.engine.paths import PathGrammar
    from guildmirror.engine.registry import TargetRegistry
    from guildmirror.services.bot_presence import BotPresenceController
    from guildmirror.services.command_service import OutboundCommandRouter
    from guildmirror.services.object_store import ObjectChange, ObjectStore, StateChange
    from guildmirror.services.voice_service import VoiceActionHandler

logger = logging.getLogger(__name__)


class StateChangeHandler:

    def __init__(
        self,
        grammar: PathGrammar,
        store: ObjectStore,
        registry: TargetRegistry,
        router: OutboundCommandRouter,
        voice: VoiceActionHandler,
        bot_presence: BotPresenceController,
    ) -> None:
        self.grammar = grammar
        self.store = store
        self.registry = registry
        self.router = router
        self.voice = voice
        self.bot_presence = bot_presence

    def attach(self) -> None:
        self.store.on_state_change(self.on_state_change)
        self.store.on_object_change(self.on_object_change)

    async def load_custom(self) -> int:
        """Apply every stored custom config once at startup."""
        enabled = 0
        for path, custom in (await self.store.list_custom()).items():
            if self.grammar.is_message_leaf(path) and self.registry.apply_custom(path, custom):
                enabled += 1
        logger.info("Text command forwarding enabled on %d message keys", enabled)
        return enabled

    # -------------------------------------------------------------------
    # State writes
    # -------------------------------------------------------------------
    async def route(self, path: str, value) -> bool:
        relative = path[len(self.grammar.namespace) + 1:]
        if relative in BOT_KEYS:
            return await self.bot_presence.handle_write(relative, value)

        if self.grammar.parse_send_target(path) is not None:
            result = await self.router.dispatch(path, value)
            return bool(result)

        voice_target = self.grammar.parse_voice_action(path)
        if voice_target is not None:
            return await self.voice.apply(
                voice_target.server_id, voice_target.member_id, voice_target.action, value,
            )

        return False

    async def on_state_change(self, change: StateChange) -> None:
        if change.ack or not self.grammar.is_own(change.path):
            return

        logger.debug("Command write %s = %r", change.path, change.val)
        if await self.route(change.path, change.val):
            await self.store.ack_if_unchanged(change.path, change.val)

    # -------------------------------------------------------------------
    # Custom config
    # -------------------------------------------------------------------
    async def on_object_change(self, change: ObjectChange) -> None:
        if self.grammar.is_message_leaf(change.path):
            self.registry.apply_custom(change.path, change.custom)
