"""
guildmirror.services.bot_presence — Bot Control Keys
====================================================

``bot.status``, ``bot.activityType`` and ``bot.activityName`` drive the
bot's own Discord presence; ``info.connection`` reports whether the gateway
session is up.  The configured ``bot_name`` is applied once on ready.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import discord

from guildmirror.constants import (
    ACTIVITY_TYPES,
    BOT_ACTIVITY_NAME,
    BOT_ACTIVITY_TYPE,
    BOT_STATUS,
    INFO_CONNECTION,
    VALID_PRESENCE_STATUS,
)
from guildmirror.engine.nodes import BOT_LEAVES

if TYPE_CHECKING:
    from guildmirror.engine.cache import WriteSuppressionCache
    from guildmirror.engine.paths import PathGrammar
    from guildmirror.services.object_store import ObjectStore

logger = logging.getLogger(__name__)

BOT_KEYS: frozenset[str] = frozenset({BOT_STATUS, BOT_ACTIVITY_TYPE, BOT_ACTIVITY_NAME})


def normalize_status(value: Any) -> str:
    value = str(value or "").lower()
    return value if value in VALID_PRESENCE_STATUS else "online"


def normalize_activity_type(value: Any) -> str:
    value = str(value or "").upper()
    return value if value in ACTIVITY_TYPES else ""


def build_activity(activity_type: str, activity_name: str) -> discord.Activity | None:
    """An activity needs both a valid type and a non-empty name."""
    if not activity_type or not activity_name:
        return None
    return discord.Activity(type=ACTIVITY_TYPES[activity_type], name=activity_name)


class BotPresenceController:

    def __init__(
        self,
        client: discord.Client,
        grammar: PathGrammar,
        store: ObjectStore,
        cache: WriteSuppressionCache,
    ) -> None:
        self.client = client
        self.grammar = grammar
        self.store = store
        self.cache = cache
        self._connected: bool | None = None

    async def ensure_definitions(self) -> None:
        for relative, definition in BOT_LEAVES.items():
            await self.cache.upsert_definition(self.grammar.key(relative), definition)

    async def _stored(self, relative: str) -> Any:
        state = await self.store.get_state(self.grammar.key(relative))
        return state.val if state is not None else None

    # -------------------------------------------------------------------
    # Presence
    # -------------------------------------------------------------------
    async def apply(
        self,
        *,
        status: Any = None,
        activity_type: Any = None,
        activity_name: Any = None,
    ) -> None:
        """Push the bot presence; missing parts are read from their keys."""
        if status is None:
            status = await self._stored(BOT_STATUS)
        if activity_type is None:
            activity_type = await self._stored(BOT_ACTIVITY_TYPE)
        if activity_name is None:
            activity_name = await self._stored(BOT_ACTIVITY_NAME)

        status = normalize_status(status)
        activity = build_activity(normalize_activity_type(activity_type), str(activity_name or ""))

        logger.debug("Set bot presence: status=%s activity=%s", status, activity)
        await self.client.change_presence(status=discord.Status(status), activity=activity)

    async def handle_write(self, relative: str, value: Any) -> bool:
        """Apply a write to one of :data:`BOT_KEYS`; True means ack it."""
        try:
            if relative == BOT_STATUS:
                await self.apply(status=value)
            elif relative == BOT_ACTIVITY_TYPE:
                await self.apply(activity_type=value)
            elif relative == BOT_ACTIVITY_NAME:
                await self.apply(activity_name=value)
            else:
                return False
        except discord.DiscordException as exc:
            logger.warning("Could not update bot presence from %s: %s", relative, exc)
            return False
        return True

    # -------------------------------------------------------------------
    # Connection indicator
    # -------------------------------------------------------------------
    async def set_connected(self, connected: bool, *, force: bool = False) -> None:
        if not force and connected == self._connected:
            return
        await self.store.set_state(self.grammar.key(INFO_CONNECTION), connected, ack=True)
        self._connected = connected

    # -------------------------------------------------------------------
    # Bot name
    # -------------------------------------------------------------------
    async def apply_bot_name(self, name: str) -> None:
        user = self.client.user
        if not name or user is None:
            return
        if user.name == name:
            logger.debug("Bot name is up to date")
            return

        logger.info("Renaming bot from %s to %s", user.name, name)
        edits = [user.edit(username=name)]
        for guild in self.client.guilds:
            if guild.me is not None:
                edits.append(guild.me.edit(nick=name))
        results = await asyncio.gather(*edits, return_exceptions=True)
        for result in results:
            if isinstance(result, discord.DiscordException):
                logger.warning("Error setting the bot name to %r: %s", name, result)
            elif isinstance(result, BaseException):
                raise result
