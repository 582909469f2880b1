"""
guildmirror.bot.cogs.gateway — Gateway Listeners
================================================

Translates discord.py gateway callbacks into :class:`GatewayEvent` objects
on the bot's dispatcher.  No mirroring logic lives here.

Structural changes (guilds, channels, roles, members, users) all collapse
into ``STRUCTURE_CHANGED``; the dispatcher turns them into a coalesced
reconciliation request when ``dynamic_server_updates`` is on.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from guildmirror.engine.events import GatewayEvent, GatewayEventKind

if TYPE_CHECKING:
    from guildmirror.bot.core import MirrorBot

logger = logging.getLogger(__name__)


class Gateway(commands.Cog, name="Gateway"):
    """Feeds gateway events into the mirror's event dispatcher."""

    def __init__(self, bot: MirrorBot) -> None:
        self.bot = bot

    def _publish(self, kind: GatewayEventKind, reason: str, **payload) -> None:
        self.bot.dispatcher.publish(GatewayEvent(kind, payload=payload, reason=reason))

    def _structure(self, reason: str) -> None:
        if self.bot.cfg.dynamic_server_updates:
            self._publish(GatewayEventKind.STRUCTURE_CHANGED, reason)

    # -------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_connect(self) -> None:
        try:
            await self.bot.bot_presence.set_connected(True)
        except Exception:
            logger.exception("Could not update info.connection on connect")

    @commands.Cog.listener()
    async def on_resumed(self) -> None:
        try:
            await self.bot.bot_presence.set_connected(True)
        except Exception:
            logger.exception("Could not update info.connection on resume")

    @commands.Cog.listener()
    async def on_disconnect(self) -> None:
        try:
            await self.bot.bot_presence.set_connected(False)
        except Exception:
            logger.exception("Could not update info.connection on disconnect")

    # -------------------------------------------------------------------
    # Messages, presence, voice
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        self._publish(GatewayEventKind.MESSAGE_CREATE, "message", message=message)

    @commands.Cog.listener()
    async def on_presence_update(self, before: discord.Member, after: discord.Member) -> None:
        if self.bot.cfg.observe_user_presence:
            self._publish(GatewayEventKind.PRESENCE_UPDATE, "presence_update", member=after)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if self.bot.cfg.observe_user_voice_state:
            self._publish(
                GatewayEventKind.VOICE_STATE_UPDATE, "voice_state_update",
                member=member, before=before, after=after,
            )

    # -------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        self._structure("guild_join")

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        self._structure("guild_remove")

    @commands.Cog.listener()
    async def on_guild_update(self, before: discord.Guild, after: discord.Guild) -> None:
        self._structure("guild_update")

    @commands.Cog.listener()
    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        self._structure("channel_create")

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        self._structure("channel_delete")

    @commands.Cog.listener()
    async def on_guild_channel_update(self, before, after) -> None:
        self._structure("channel_update")

    @commands.Cog.listener()
    async def on_guild_role_create(self, role: discord.Role) -> None:
        self._structure("role_create")

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        self._structure("role_delete")

    @commands.Cog.listener()
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        self._structure("role_update")

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        self._structure("member_join")

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        self._structure("member_remove")

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        self._structure("member_update")

    @commands.Cog.listener()
    async def on_user_update(self, before: discord.User, after: discord.User) -> None:
        self._structure("user_update")


async def setup(bot: MirrorBot) -> None:
    await bot.add_cog(Gateway(bot))
