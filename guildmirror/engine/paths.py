"""
guildmirror.engine.paths — Key-Path Grammar
============================================

Pure functions mapping Discord entities to store paths and back.

Path shapes (``<ns>`` is the configured namespace, e.g. ``discord.0``)::

    <ns>.servers.<g>
    <ns>.servers.<g>.members.<m>
    <ns>.servers.<g>.channels.<c>
    <ns>.servers.<g>.channels.<c>.channels.<s>     # child of a category
    <ns>.users.<u>

Leaves hang off these prefixes (``.json``, ``.message``, ``.send`` …).
Nothing here touches the store or the network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from guildmirror.constants import LEAF_MESSAGE, SEND_ACTIONS, VOICE_ACTIONS


@dataclass(frozen=True, slots=True)
class SendTarget:
    """Where an outbound command key points to.

    Exactly one of (``server_id`` + ``channel_id``) or ``user_id`` is set.
    ``channel_id`` is always the innermost channel (the sub-channel when the
    path has two channel levels).
    """

    prefix: str
    action: str
    server_id: str | None = None
    channel_id: str | None = None
    parent_id: str | None = None
    user_id: str | None = None

    @property
    def is_user(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True, slots=True)
class VoiceTarget:
    """Member addressed by a ``voiceDisconnect``/``voiceServerMute``/``voiceServerDeaf`` key."""

    server_id: str
    member_id: str
    action: str


class PathGrammar:
    """Builds and matches every mirrored key for one namespace."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        ns = re.escape(namespace)
        actions = "|".join(SEND_ACTIONS)
        voice_actions = "|".join(VOICE_ACTIONS)

        self._re_channel_action = re.compile(
            rf"^({ns}\.servers\.(\d+)\.channels\.(\d+)(?:\.channels\.(\d+))?)\.({actions})$"
        )
        self._re_user_action = re.compile(rf"^({ns}\.users\.(\d+))\.({actions})$")
        self._re_voice_action = re.compile(
            rf"^{ns}\.servers\.(\d+)\.members\.(\d+)\.voice({voice_actions})$"
        )
        self._re_server_or_channel = re.compile(
            rf"^{ns}\.servers\.(\d+)(?:\.channels\.(\d+)){{0,2}}$"
        )
        self._re_member = re.compile(rf"^{ns}\.servers\.(\d+)\.members\.(\d+)$")
        self._re_user = re.compile(rf"^{ns}\.users\.(\d+)$")

    # -------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------
    def key(self, relative: str) -> str:
        """Prefix a namespace-relative key such as ``bot.status``."""
        return f"{self.namespace}.{relative}"

    @property
    def servers_root(self) -> str:
        return f"{self.namespace}.servers"

    @property
    def users_root(self) -> str:
        return f"{self.namespace}.users"

    def server(self, server_id) -> str:
        return f"{self.servers_root}.{server_id}"

    def server_members(self, server_id) -> str:
        return f"{self.server(server_id)}.members"

    def server_channels(self, server_id) -> str:
        return f"{self.server(server_id)}.channels"

    def member(self, server_id, member_id) -> str:
        return f"{self.server_members(server_id)}.{member_id}"

    def channel(self, server_id, channel_id, parent_id=None) -> str:
        """Path of a channel; children of a category nest under their parent."""
        if parent_id:
            return f"{self.server_channels(server_id)}.{parent_id}.channels.{channel_id}"
        return f"{self.server_channels(server_id)}.{channel_id}"

    def user(self, user_id) -> str:
        return f"{self.users_root}.{user_id}"

    @staticmethod
    def leaf(prefix: str, name: str) -> str:
        return f"{prefix}.{name}"

    @staticmethod
    def parent_of(path: str) -> str:
        """Strip the final segment (e.g. the action name of a command key)."""
        return path.rsplit(".", 1)[0]

    # -------------------------------------------------------------------
    # Matchers
    # -------------------------------------------------------------------
    def parse_send_target(self, path: str) -> SendTarget | None:
        """Recover the send target of a ``send``/``sendFile``/``sendReply``/``sendReaction`` key."""
        m = self._re_channel_action.match(path)
        if m:
            prefix, server_id, first, second, action = m.groups()
            if second:
                return SendTarget(
                    prefix=prefix, action=action, server_id=server_id,
                    channel_id=second, parent_id=first,
                )
            return SendTarget(prefix=prefix, action=action, server_id=server_id, channel_id=first)

        m = self._re_user_action.match(path)
        if m:
            prefix, user_id, action = m.groups()
            return SendTarget(prefix=prefix, action=action, user_id=user_id)
        return None

    def parse_voice_action(self, path: str) -> VoiceTarget | None:
        m = self._re_voice_action.match(path)
        if not m:
            return None
        server_id, member_id, action = m.groups()
        return VoiceTarget(server_id=server_id, member_id=member_id, action=action)

    def is_entity_root(self, path: str) -> bool:
        """True for the root node of a server, channel, member or user subtree."""
        return bool(
            self._re_server_or_channel.match(path)
            or self._re_member.match(path)
            or self._re_user.match(path)
        )

    def is_message_leaf(self, path: str) -> bool:
        return path.startswith(f"{self.namespace}.") and path.endswith(f".{LEAF_MESSAGE}")

    def is_own(self, path: str) -> bool:
        return path.startswith(f"{self.namespace}.")
