"""
guildmirror.bot.core — Bot Instance, Wiring & Cog Loader
========================================================

**Why this file exists:**
:class:`MirrorBot` is the one place where the mirror's parts are built and
connected.  It owns, for its whole lifetime:

1. the store (``bot.store``) and the two write-suppression caches
   (``bot.cache``), plus the message target registry
2. the reconciliation engine and every event/command service
3. the :class:`EventDispatcher` that cogs publish gateway events to
4. the PG LISTEN thread relaying API writes into the store subscribers

Cogs only translate gateway callbacks into :class:`GatewayEvent` objects;
what happens next is decided by the dispatch table registered here.
"""

from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands
from sqlalchemy import Engine

from guildmirror.config import MirrorConfig
from guildmirror.engine.auth import AuthorizationPolicy
from guildmirror.engine.cache import WriteSuppressionCache
from guildmirror.engine.events import EventDispatcher, GatewayEvent, GatewayEventKind
from guildmirror.engine.paths import PathGrammar
from guildmirror.engine.registry import TargetRegistry
from guildmirror.services.bot_presence import BotPresenceController
from guildmirror.services.command_service import OutboundCommandRouter
from guildmirror.services.message_service import MessageIngestionRouter
from guildmirror.services.object_store import ObjectStore
from guildmirror.services.presence_service import PresenceProjector
from guildmirror.services.reconciliation_service import ReconciliationEngine
from guildmirror.services.remote_graph import DiscordGraph
from guildmirror.services.state_dispatcher import StateChangeHandler
from guildmirror.services.store_notify import StoreNotifyListener
from guildmirror.services.text_command import HttpTextCommandClient
from guildmirror.services.voice_service import VoiceActionHandler, VoiceStateMirror

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "guildmirror.bot.cogs.gateway",
    "guildmirror.bot.cogs.tasks",
]


class MirrorBot(commands.Bot):
    """Bot subclass carrying the whole mirror.

    Parameters
    ----------
    cfg:
        The parsed :class:`MirrorConfig` from ``config.yaml``.
    engine:
        SQLAlchemy :class:`Engine` backing the object store.
    """

    def __init__(self, cfg: MirrorConfig, engine: Engine) -> None:
        # MESSAGE_CONTENT, GUILD_MEMBERS and GUILD_PRESENCES are privileged
        # and must be enabled in the Developer Portal.
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = cfg.observe_user_presence
        intents.voice_states = True
        intents.dm_messages = True

        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

        self.cfg = cfg
        self.engine = engine

        # --- Owned state -----------------------------------------------------
        self.grammar = PathGrammar(cfg.namespace)
        self.store = ObjectStore(engine)
        self.cache = WriteSuppressionCache(self.store)
        self.registry = TargetRegistry()
        self.policy = AuthorizationPolicy(cfg)
        self.graph = DiscordGraph(self)

        # --- Services --------------------------------------------------------
        self.presence = PresenceProjector(
            self.grammar, self.cache, self.store, enabled=cfg.observe_user_presence,
        )
        self.reconciler = ReconciliationEngine(
            self.grammar, self.cache, self.store, self.graph, self.registry, self.presence,
        )
        self.voice_actions = VoiceActionHandler(self.graph)
        self.voice_mirror = VoiceStateMirror(self.grammar, self.cache, self.store)
        self.command_router = OutboundCommandRouter(
            self.grammar, self.store, self.graph, self.policy,
        )
        self.bot_presence = BotPresenceController(self, self.grammar, self.store, self.cache)
        self.message_router = MessageIngestionRouter(
            cfg,
            self.grammar,
            self.cache,
            self.store,
            self.registry,
            self.policy,
            bot_user_id=lambda: self.user.id if self.user else None,
            text_command=HttpTextCommandClient(cfg.text_command_url) if cfg.text_command_url else None,
        )
        self.state_handler = StateChangeHandler(
            self.grammar,
            self.store,
            self.registry,
            self.command_router,
            self.voice_actions,
            self.bot_presence,
        )

        self.dispatcher = EventDispatcher()
        self.notify_listener = StoreNotifyListener(engine, self.store)
        self._background: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load cogs, wire the dispatch table, attach store subscribers."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        self.dispatcher.register(GatewayEventKind.READY, self._on_ready_event)
        self.dispatcher.register(GatewayEventKind.MESSAGE_CREATE, self._on_message_event)
        self.dispatcher.register(GatewayEventKind.STRUCTURE_CHANGED, self._on_structure_event)
        if self.cfg.observe_user_presence:
            self.dispatcher.register(GatewayEventKind.PRESENCE_UPDATE, self._on_presence_event)
        if self.cfg.observe_user_voice_state:
            self.dispatcher.register(GatewayEventKind.VOICE_STATE_UPDATE, self._on_voice_event)
        self.dispatcher.start()

        self.state_handler.attach()
        await self.bot_presence.ensure_definitions()
        await self.state_handler.load_custom()
        self.notify_listener.start(asyncio.get_running_loop())

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)
        self.dispatcher.publish(GatewayEvent(GatewayEventKind.READY, reason="ready"))

    async def close(self) -> None:
        """Graceful shutdown: stop passes, drain the queue, stop the listener."""
        logger.info("Mirror shutting down…")
        self.reconciler.stop()
        await self.dispatcher.stop()
        self.notify_listener.stop()
        try:
            await self.bot_presence.set_connected(False)
        except Exception:
            logger.exception("Could not reset info.connection")
        await super().close()

    def request_reconciliation(self, reason: str) -> None:
        """Start a pass in the background; overlapping requests coalesce."""
        task = asyncio.get_running_loop().create_task(
            self.reconciler.request(reason), name=f"reconcile:{reason}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -----------------------------------------------------------------------
    # Dispatch table
    # -----------------------------------------------------------------------
    async def _on_ready_event(self, event: GatewayEvent) -> None:
        await self.bot_presence.set_connected(True, force=True)
        if self.cfg.bot_name:
            await self.bot_presence.apply_bot_name(self.cfg.bot_name)
        await self.bot_presence.apply()
        self.request_reconciliation(event.reason)

    async def _on_message_event(self, event: GatewayEvent) -> None:
        await self.message_router.ingest(event.payload["message"])

    async def _on_structure_event(self, event: GatewayEvent) -> None:
        if not self.cfg.dynamic_server_updates:
            return
        self.request_reconciliation(event.reason)

    async def _on_presence_event(self, event: GatewayEvent) -> None:
        await self.presence.apply_update(event.payload["member"])

    async def _on_voice_event(self, event: GatewayEvent) -> None:
        await self.voice_mirror.update(
            event.payload["member"], event.payload["before"], event.payload["after"],
        )
