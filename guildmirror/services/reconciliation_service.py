"""
guildmirror.services.reconciliation_service — Full Resync + Mark-and-Sweep
===========================================================================

One pass walks everything the bot can see and brings the store in line:

    1. Fetch all servers.  Per server: container nodes, then every member,
       then every channel in two waves (parentless first, then children of
       a category, whose path and name depend on the parent).
    2. Every distinct user met as a member (except the bot itself) gets a
       ``users.<id>`` subtree with presence, avatar and bot flag.
    3. Sweep: list every node under ``servers`` and ``users``; each entity
       root (server, channel, member, user) that was not seen in step 1/2
       is deleted recursively, once, and purged from the caches and the
       target registry.

All writes go through the :class:`WriteSuppressionCache` (definitions,
``json`` snapshots) or ``set_state_changed`` (scalar leaves), so a pass
over an unchanged graph performs no store writes at all.

A server whose detail fetch fails is skipped: its existing subtree is left
untouched and, since the set of users is then incomplete, no user is swept
in that pass.  A pass interrupted by :meth:`ReconciliationEngine.stop`
never sweeps.

Passes are single-flight: :meth:`ReconciliationEngine.request` during a
running pass schedules exactly one trailing pass instead of overlapping.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import discord

from guildmirror.constants import (
    ICON_TEXT_CHANNEL,
    ICON_VOICE_CHANNEL,
    LEAF_JSON,
    TEXT_CHANNEL_TYPES,
    VOICE_CHANNEL_TYPES,
    user_tag,
)
from guildmirror.engine.nodes import (
    CHANNEL_LEAVES,
    CHANNELS_CONTAINER,
    COMMAND_LEAVES,
    MEMBER_LEAVES,
    MEMBERS_CONTAINER,
    MESSAGE_LEAVES,
    USER_LEAVES,
    USER_MESSAGE_LEAVES,
    NodeDefinition,
    container,
)
from guildmirror.services.remote_graph import RemoteGraphError
from guildmirror.services.voice_service import voice_fields

if TYPE_CHECKING:
    from guildmirror.engine.cache import WriteSuppressionCache
    from guildmirror.engine.paths import PathGrammar
    from guildmirror.engine.registry import TargetRegistry
    from guildmirror.services.object_store import ObjectStore
    from guildmirror.services.presence_service import PresenceProjector
    from guildmirror.services.remote_graph import DiscordGraph

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (discord.DiscordException, RemoteGraphError, asyncio.TimeoutError)


@dataclass(slots=True)
class PassSummary:
    """Counters for one reconciliation pass."""

    servers: int = 0
    members: int = 0
    channels: int = 0
    users: int = 0
    skipped_servers: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    definition_writes: int = 0
    snapshot_writes: int = 0
    state_writes: int = 0
    aborted: bool = False

    @property
    def writes(self) -> int:
        return self.definition_writes + self.snapshot_writes + self.state_writes + len(self.deleted)


def _ms(dt) -> int:
    return int(dt.timestamp() * 1000) if dt is not None else 0


def _avatar_url(user) -> str:
    asset = user.avatar or user.default_avatar
    return str(asset.url) if asset is not None else ""


class ReconciliationEngine:
    """Mirror the whole remote graph into the store."""

    def __init__(
        self,
        grammar: PathGrammar,
        cache: WriteSuppressionCache,
        store: ObjectStore,
        graph: DiscordGraph,
        registry: TargetRegistry,
        presence: PresenceProjector,
    ) -> None:
        self.grammar = grammar
        self.cache = cache
        self.store = store
        self.graph = graph
        self.registry = registry
        self.presence = presence

        self.stopped = False
        self.last_summary: PassSummary | None = None
        self._running = False
        self._rerun = False

    # -------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Short-circuit the current pass at its next checkpoint."""
        self.stopped = True

    async def request(self, reason: str = "manual") -> PassSummary | None:
        """Run a pass now, or mark a trailing pass if one is already running.

        Returns the summary of the last pass run by this call, or ``None``
        when the request was folded into a running pass.
        """
        if self.stopped:
            return None
        if self._running:
            logger.debug("Reconciliation already running, queued rerun (%s)", reason)
            self._rerun = True
            return None

        self._running = True
        try:
            logger.debug("Reconciliation requested (%s)", reason)
            summary = await self.reconcile()
            while self._rerun and not self.stopped:
                self._rerun = False
                logger.debug("Running queued reconciliation")
                summary = await self.reconcile()
            return summary
        finally:
            self._running = False
            self._rerun = False

    # -------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------
    async def reconcile(self) -> PassSummary:
        summary = PassSummary()
        def_before = self.cache.definition_writes
        snap_before = self.cache.snapshot_writes

        known: set[str] = set()
        users: dict[str, discord.Member] = {}
        bot_id = self.graph.bot_user_id

        try:
            servers = await self.graph.fetch_servers()
        except TRANSIENT_ERRORS as exc:
            logger.warning("Could not list servers, reconciliation skipped: %s", exc)
            summary.aborted = True
            return self._finish(summary, def_before, snap_before)

        for guild in servers:
            if self.stopped:
                summary.aborted = True
                return self._finish(summary, def_before, snap_before)
            try:
                await self._reconcile_server(guild, bot_id, known, users, summary)
            except TRANSIENT_ERRORS as exc:
                logger.warning("Skipping server %s (%s) this pass: %s", guild.id, guild.name, exc)
                summary.skipped_servers.append(str(guild.id))

        if self.stopped:
            summary.aborted = True
            return self._finish(summary, def_before, snap_before)

        for user_id, member in users.items():
            await self._reconcile_user(user_id, member, known, summary)
            summary.users += 1

        if self.stopped:
            summary.aborted = True
            return self._finish(summary, def_before, snap_before)

        await self._sweep(known, summary)
        return self._finish(summary, def_before, snap_before)

    def _finish(self, summary: PassSummary, def_before: int, snap_before: int) -> PassSummary:
        summary.definition_writes = self.cache.definition_writes - def_before
        summary.snapshot_writes = self.cache.snapshot_writes - snap_before
        self.last_summary = summary
        logger.info(
            "Reconciliation %s: %d servers, %d members, %d channels, %d users, "
            "%d writes, %d deleted, %d skipped",
            "aborted" if summary.aborted else "done",
            summary.servers, summary.members, summary.channels, summary.users,
            summary.writes, len(summary.deleted), len(summary.skipped_servers),
        )
        return summary

    # -------------------------------------------------------------------
    # Write helpers
    # -------------------------------------------------------------------
    async def _define_leaves(self, prefix: str, leaves: dict[str, NodeDefinition]) -> None:
        await asyncio.gather(*(
            self.cache.upsert_definition(self.grammar.leaf(prefix, name), definition)
            for name, definition in leaves.items()
        ))

    async def _set_values(self, prefix: str, values: dict[str, Any], summary: PassSummary) -> None:
        results = await asyncio.gather(*(
            self.store.set_state_changed(self.grammar.leaf(prefix, name), value, ack=True)
            for name, value in values.items()
        ))
        summary.state_writes += sum(1 for written in results if written)

    # -------------------------------------------------------------------
    # Servers
    # -------------------------------------------------------------------
    async def _reconcile_server(
        self,
        guild: discord.Guild,
        bot_id: int | None,
        known: set[str],
        users: dict[str, discord.Member],
        summary: PassSummary,
    ) -> None:
        prefix = self.grammar.server(guild.id)
        known.add(prefix)

        await self.cache.upsert_definition(prefix, container(guild.name))
        await self.cache.upsert_definition(self.grammar.server_members(guild.id), MEMBERS_CONTAINER)
        await self.cache.upsert_definition(self.grammar.server_channels(guild.id), CHANNELS_CONTAINER)

        if self.stopped:
            return
        members = await self.graph.fetch_members(guild)
        for member in members:
            if member.id != bot_id:
                users.setdefault(str(member.id), member)
            await self._reconcile_member(guild, member, known, summary)
            summary.members += 1

        if self.stopped:
            return
        channels = await self.graph.fetch_channels(guild)
        parents = [c for c in channels if getattr(c, "category_id", None) is None]
        children = [c for c in channels if getattr(c, "category_id", None) is not None]
        for wave in (parents, children):
            for channel in wave:
                await self._reconcile_channel(guild, channel, known, summary)
                summary.channels += 1

        summary.servers += 1

    # -------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------
    async def _reconcile_member(
        self,
        guild: discord.Guild,
        member: discord.Member,
        known: set[str],
        summary: PassSummary,
    ) -> None:
        prefix = self.grammar.member(guild.id, member.id)
        known.add(prefix)

        tag = user_tag(member)
        roles = [role.name for role in member.roles]
        joined = _ms(member.joined_at)
        voice = voice_fields(member.voice)

        await self.cache.upsert_definition(prefix, container(f"{member.display_name} ({tag})"))
        await self._define_leaves(prefix, MEMBER_LEAVES)

        await self._set_values(prefix, {
            "tag": tag,
            "displayName": member.display_name,
            "roles": ", ".join(roles),
            "joinedAt": joined,
            "voiceChannel": voice["voiceChannel"],
            "voiceSelfDeaf": voice["voiceSelfDeaf"],
            "voiceServerDeaf": voice["voiceServerDeaf"],
            "voiceSelfMute": voice["voiceSelfMute"],
            "voiceServerMute": voice["voiceServerMute"],
        }, summary)

        await self.cache.upsert_snapshot(self.grammar.leaf(prefix, LEAF_JSON), {
            "tag": tag,
            "id": str(member.id),
            "displayName": member.display_name,
            "roles": roles,
            "joined": joined,
            **voice,
        })

    # -------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------
    async def _reconcile_channel(
        self,
        guild: discord.Guild,
        channel: discord.abc.GuildChannel,
        known: set[str],
        summary: PassSummary,
    ) -> None:
        parent_id = getattr(channel, "category_id", None)
        prefix = self.grammar.channel(guild.id, channel.id, parent_id)
        known.add(prefix)

        parent = getattr(channel, "category", None)
        name = f"{parent.name} / {channel.name}" if parent_id and parent is not None else channel.name

        icon = None
        is_text = channel.type in TEXT_CHANNEL_TYPES
        if is_text:
            icon = ICON_TEXT_CHANNEL
        elif channel.type in VOICE_CHANNEL_TYPES:
            icon = ICON_VOICE_CHANNEL

        await self.cache.upsert_definition(
            prefix, container(name, icon=icon, channelId=str(channel.id)),
        )
        await self._define_leaves(prefix, CHANNEL_LEAVES)
        if channel.type is discord.ChannelType.category:
            await self.cache.upsert_definition(self.grammar.leaf(prefix, "channels"), CHANNELS_CONTAINER)

        if is_text:
            await self._define_leaves(prefix, MESSAGE_LEAVES)
            await self._define_leaves(prefix, COMMAND_LEAVES)
            self.registry.register_message_target(prefix)

        members = list(getattr(channel, "members", None) or [])
        await self._set_values(prefix, {
            "memberCount": len(members),
            "members": ", ".join(m.display_name for m in members),
        }, summary)
        await self.cache.upsert_snapshot(self.grammar.leaf(prefix, LEAF_JSON), {
            "id": str(channel.id),
            "name": channel.name,
            "type": str(channel.type),
            "memberCount": len(members),
            "members": [
                {"id": str(m.id), "tag": user_tag(m), "displayName": m.display_name}
                for m in members
            ],
        })

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------
    async def _reconcile_user(
        self,
        user_id: str,
        member: discord.Member,
        known: set[str],
        summary: PassSummary,
    ) -> None:
        prefix = self.grammar.user(user_id)
        known.add(prefix)

        tag = user_tag(member)
        avatar = _avatar_url(member)

        await self.cache.upsert_definition(prefix, container(tag, userId=user_id))
        await self._define_leaves(prefix, USER_LEAVES)
        await self._define_leaves(prefix, USER_MESSAGE_LEAVES)
        await self._define_leaves(prefix, COMMAND_LEAVES)
        self.registry.register_message_target(prefix)

        presence = await self.presence.project(user_id, member)

        await self._set_values(prefix, {
            "tag": tag,
            "avatarUrl": avatar,
            "bot": bool(member.bot),
        }, summary)
        await self.cache.upsert_snapshot(self.grammar.leaf(prefix, LEAF_JSON), {
            "id": user_id,
            "tag": tag,
            "activityName": presence.activity_name,
            "activityType": presence.activity_type,
            "avatarUrl": avatar,
            "bot": bool(member.bot),
            "status": presence.status,
        })

    # -------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------
    async def _sweep(self, known: set[str], summary: PassSummary) -> None:
        protected = [self.grammar.server(sid) for sid in summary.skipped_servers]
        users_complete = not summary.skipped_servers

        existing = await self.store.list_objects(self.grammar.servers_root)
        existing += await self.store.list_objects(self.grammar.users_root)

        deleted_roots: list[str] = []
        for path in sorted(existing):
            if path in known or not self.grammar.is_entity_root(path):
                continue
            if any(path == root or path.startswith(root + ".") for root in deleted_roots):
                continue
            if any(path == root or path.startswith(root + ".") for root in protected):
                continue
            if not users_complete and path.startswith(self.grammar.users_root + "."):
                continue

            logger.debug("%s is no longer available, deleting subtree", path)
            await self.store.delete_object(path, recursive=True)
            self.cache.invalidate_subtree(path)
            self.registry.purge_subtree(path)
            deleted_roots.append(path)

        summary.deleted = deleted_roots
