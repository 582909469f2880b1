"""
guildmirror.services.remote_graph — Discord Graph Accessor
==========================================================

Thin layer over a ``discord.Client`` that the engine talks to instead of
the client itself:

- full listings for servers, members and channels
- live-handle resolution for send targets and members
- every mutating call (send, reply, react, disconnect, mute, deafen)

Unresolvable targets raise :class:`RemoteGraphError`.  Failures of the
Discord HTTP API propagate as ``discord.DiscordException`` so the caller
decides how to degrade.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import discord
import httpx

from guildmirror.engine.payloads import FileRef, MessagePayload

if TYPE_CHECKING:
    from guildmirror.engine.paths import SendTarget

logger = logging.getLogger(__name__)


class RemoteGraphError(Exception):
    """A target (server, channel, user, member, message) could not be resolved."""


def _snowflake(value: str | int, what: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RemoteGraphError(f"Invalid {what} id: {value!r}") from None


class DiscordGraph:
    """Remote-graph accessor backed by a discord.py client."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    # -------------------------------------------------------------------
    # Client state
    # -------------------------------------------------------------------
    def is_ready(self) -> bool:
        return self.client.is_ready()

    @property
    def bot_user_id(self) -> int | None:
        user = self.client.user
        return user.id if user is not None else None

    # -------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------
    async def fetch_servers(self) -> list[discord.Guild]:
        """Every guild the bot is in, as full (not partial) guild objects."""
        guilds: list[discord.Guild] = []
        async for partial in self.client.fetch_guilds(limit=None):
            guild = self.client.get_guild(partial.id)
            if guild is None:
                guild = await self.client.fetch_guild(partial.id)
            guilds.append(guild)
        return guilds

    async def fetch_members(self, guild: discord.Guild) -> list[discord.Member]:
        if guild.chunked:
            return list(guild.members)
        return list(await guild.chunk())

    async def fetch_channels(self, guild: discord.Guild) -> list[discord.abc.GuildChannel]:
        fetched = await guild.fetch_channels()
        # Prefer cached objects: only those see connected voice members
        return [guild.get_channel(c.id) or c for c in fetched]

    # -------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------
    async def resolve_guild(self, server_id: str | int) -> discord.Guild:
        gid = _snowflake(server_id, "server")
        guild = self.client.get_guild(gid)
        if guild is None:
            try:
                guild = await self.client.fetch_guild(gid)
            except discord.NotFound:
                raise RemoteGraphError(f"Unknown server {server_id}") from None
        return guild

    async def resolve_member(self, server_id: str | int, member_id: str | int) -> discord.Member:
        guild = await self.resolve_guild(server_id)
        mid = _snowflake(member_id, "member")
        member = guild.get_member(mid)
        if member is None:
            try:
                member = await guild.fetch_member(mid)
            except discord.NotFound:
                raise RemoteGraphError(f"Unknown member {member_id} on {server_id}") from None
        return member

    async def resolve_messageable(self, target: SendTarget) -> discord.abc.Messageable:
        """Resolve the channel or DM channel a command key points to."""
        if target.is_user:
            uid = _snowflake(target.user_id, "user")
            user = self.client.get_user(uid)
            if user is None:
                try:
                    user = await self.client.fetch_user(uid)
                except discord.NotFound:
                    raise RemoteGraphError(f"Unknown user {target.user_id}") from None
            return user.dm_channel or await user.create_dm()

        guild = await self.resolve_guild(target.server_id)
        channel = guild.get_channel(_snowflake(target.channel_id, "channel"))
        if channel is None:
            raise RemoteGraphError(
                f"Unknown channel {target.channel_id} on server {target.server_id}"
            )
        if not isinstance(channel, discord.abc.Messageable):
            raise RemoteGraphError(f"Channel {target.channel_id} is not a text channel")
        return channel

    async def fetch_message(
        self, channel: discord.abc.Messageable, message_id: str,
    ) -> discord.Message:
        """The channel's cached message first, then a remote fetch."""
        mid = _snowflake(message_id, "message")
        cached = discord.utils.get(self.client.cached_messages, id=mid, channel__id=channel.id)
        if cached is not None:
            return cached
        try:
            return await channel.fetch_message(mid)
        except discord.NotFound:
            raise RemoteGraphError(f"Unknown message {message_id}") from None

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    async def send(self, target: SendTarget, payload: MessagePayload) -> discord.Message:
        channel = await self.resolve_messageable(target)

        kwargs: dict = {}
        if payload.content:
            kwargs["content"] = payload.content
        if payload.files:
            kwargs["files"] = [await self._to_file(ref) for ref in payload.files]
        if payload.embeds:
            kwargs["embeds"] = list(payload.embeds)
        if payload.reply_to:
            mid = _snowflake(payload.reply_to, "message")
            kwargs["reference"] = channel.get_partial_message(mid)

        return await channel.send(**kwargs)

    async def react(self, target: SendTarget, message_id: str, emoji: str) -> discord.Message:
        channel = await self.resolve_messageable(target)
        message = await self.fetch_message(channel, message_id)
        await message.add_reaction(emoji)
        return message

    async def disconnect_member(self, server_id: str, member_id: str) -> None:
        member = await self.resolve_member(server_id, member_id)
        await member.move_to(None)

    async def set_member_mute(self, server_id: str, member_id: str, muted: bool) -> None:
        member = await self.resolve_member(server_id, member_id)
        await member.edit(mute=muted)

    async def set_member_deaf(self, server_id: str, member_id: str, deafened: bool) -> None:
        member = await self.resolve_member(server_id, member_id)
        await member.edit(deafen=deafened)

    # -------------------------------------------------------------------
    # Attachments
    # -------------------------------------------------------------------
    async def _to_file(self, ref: FileRef) -> discord.File:
        if ref.data is not None:
            return discord.File(io.BytesIO(ref.data), filename=ref.name, description=ref.description)
        if ref.is_url:
            transport = httpx.AsyncHTTPTransport(retries=1)
            async with httpx.AsyncClient(timeout=30, transport=transport) as http:
                resp = await http.get(ref.source, follow_redirects=True)
                resp.raise_for_status()
            return discord.File(io.BytesIO(resp.content), filename=ref.name, description=ref.description)
        return discord.File(ref.source, filename=ref.name, description=ref.description)
