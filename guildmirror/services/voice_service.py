"""
guildmirror.services.voice_service — Voice Moderation & Voice-State Mirror
==========================================================================

Two directions:

- :class:`VoiceActionHandler` turns writes to ``voiceDisconnect``,
  ``voiceServerMute`` and ``voiceServerDeaf`` into Discord calls.
- :class:`VoiceStateMirror` reflects live ``on_voice_state_update`` events
  into a member's voice leaves and ``json`` snapshot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from guildmirror.constants import VOICE_DISCONNECT, VOICE_SERVER_DEAF, VOICE_SERVER_MUTE
from guildmirror.services.remote_graph import RemoteGraphError

if TYPE_CHECKING:
    from guildmirror.engine.cache import WriteSuppressionCache
    from guildmirror.engine.paths import PathGrammar
    from guildmirror.services.object_store import ObjectStore
    from guildmirror.services.remote_graph import DiscordGraph

logger = logging.getLogger(__name__)

# Voice fields that also have their own leaf (voiceChannelId is json-only)
VOICE_LEAF_FIELDS: frozenset[str] = frozenset({
    "voiceChannel",
    "voiceSelfDeaf",
    "voiceServerDeaf",
    "voiceSelfMute",
    "voiceServerMute",
})


def voice_fields(voice: discord.VoiceState | None) -> dict[str, Any]:
    """Voice sub-state of a member as stored in its ``json`` snapshot."""
    channel = voice.channel if voice is not None else None
    return {
        "voiceChannel": channel.name if channel is not None else "",
        "voiceChannelId": str(channel.id) if channel is not None else "",
        "voiceSelfDeaf": bool(voice is not None and voice.self_deaf),
        "voiceServerDeaf": bool(voice is not None and voice.deaf),
        "voiceSelfMute": bool(voice is not None and voice.self_mute),
        "voiceServerMute": bool(voice is not None and voice.mute),
    }


# ---------------------------------------------------------------------------
# Outbound: moderation actions
# ---------------------------------------------------------------------------
class VoiceActionHandler:

    def __init__(self, graph: DiscordGraph) -> None:
        self.graph = graph

    async def apply(self, server_id: str, member_id: str, action: str, value: Any) -> bool:
        """Run *action* on the member; True means the triggering write may be acked.

        ``Disconnect`` only acts on a truthy value.  ``ServerMute`` and
        ``ServerDeaf`` set the remote flag to ``bool(value)``.
        """
        try:
            if action == VOICE_DISCONNECT:
                if not value:
                    return False
                await self.graph.disconnect_member(server_id, member_id)
                logger.debug("Disconnected member %s on %s from voice", member_id, server_id)
            elif action == VOICE_SERVER_MUTE:
                await self.graph.set_member_mute(server_id, member_id, bool(value))
                logger.debug("Server mute of %s on %s set to %s", member_id, server_id, bool(value))
            elif action == VOICE_SERVER_DEAF:
                await self.graph.set_member_deaf(server_id, member_id, bool(value))
                logger.debug("Server deafen of %s on %s set to %s", member_id, server_id, bool(value))
            else:
                logger.debug("Unknown voice action %r", action)
                return False
        except RemoteGraphError as exc:
            logger.warning("Voice action %s for %s on %s: %s", action, member_id, server_id, exc)
            return False
        except discord.DiscordException as exc:
            logger.warning(
                "Voice action %s for %s on %s failed: %s", action, member_id, server_id, exc,
            )
            return False
        return True


# ---------------------------------------------------------------------------
# Inbound: live voice-state mirror
# ---------------------------------------------------------------------------
class VoiceStateMirror:

    def __init__(
        self,
        grammar: PathGrammar,
        cache: WriteSuppressionCache,
        store: ObjectStore,
    ) -> None:
        self.grammar = grammar
        self.cache = cache
        self.store = store

    async def update(
        self,
        member: discord.Member,
        before: discord.VoiceState | None,
        after: discord.VoiceState | None,
    ) -> list[str]:
        """Write only the voice leaves that changed, plus the member ``json``.

        Returns the names of the changed fields; empty for members the
        mirror has not created.
        """
        prefix = self.grammar.member(member.guild.id, member.id)
        if not self.cache.has_definition(prefix):
            return []

        old = voice_fields(before)
        new = voice_fields(after)
        changed = [k for k, v in new.items() if old[k] != v]

        for field_name in changed:
            if field_name in VOICE_LEAF_FIELDS:
                await self.store.set_state_changed(
                    self.grammar.leaf(prefix, field_name), new[field_name], ack=True,
                )

        json_path = self.grammar.leaf(prefix, "json")
        current = self.cache.get_snapshot(json_path)
        if current is not None:
            current.update(new)
            await self.cache.upsert_snapshot(json_path, current)

        if changed:
            logger.debug("Voice state of %s on %s: %s", member.id, member.guild.id, changed)
        return changed
