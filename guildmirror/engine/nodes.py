"""
guildmirror.engine.nodes — Node Definitions
============================================

Structural definition of every node the mirror writes.  A definition is a
frozen dataclass, so two definitions are deep-equal exactly when the store
would end up with the same object, which is what the definition cache
compares against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from guildmirror.constants import (
    ACTION_SEND,
    ACTION_SEND_FILE,
    ACTION_SEND_REACTION,
    ACTION_SEND_REPLY,
    LEAF_JSON,
    LEAF_MESSAGE,
    LEAF_MESSAGE_AUTHOR,
    LEAF_MESSAGE_ID,
    LEAF_MESSAGE_JSON,
    LEAF_MESSAGE_TIMESTAMP,
)


@dataclass(frozen=True, slots=True)
class NodeDefinition:
    """What a node *is*: container or typed leaf, plus display metadata."""

    kind: str                      # "folder" | "channel" | "state"
    name: str
    icon: str | None = None
    role: str | None = None
    value_type: str | None = None  # "string" | "number" | "boolean"
    read: bool = True
    write: bool = False
    default: Any = None
    native: tuple[tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def is_leaf(self) -> bool:
        return self.kind == "state"

    def common(self) -> dict[str, Any]:
        """Render the ``common`` block stored on the object row."""
        common: dict[str, Any] = {"name": self.name}
        if self.icon is not None:
            common["icon"] = self.icon
        if self.is_leaf:
            common.update({
                "role": self.role,
                "type": self.value_type,
                "read": self.read,
                "write": self.write,
                "def": self.default,
            })
        return common

    def native_dict(self) -> dict[str, Any]:
        return dict(self.native)


def container(name: str, *, icon: str | None = None, **native: Any) -> NodeDefinition:
    """Structural node that only holds children."""
    return NodeDefinition(
        kind="channel",
        name=name,
        icon=icon,
        native=tuple(sorted(native.items())),
    )


def leaf(
    name: str,
    role: str,
    value_type: str = "string",
    *,
    write: bool = False,
    default: Any = None,
) -> NodeDefinition:
    """Leaf node holding one typed value."""
    if default is None:
        default = {"string": "", "number": 0, "boolean": False}.get(value_type)
    return NodeDefinition(
        kind="state",
        name=name,
        role=role,
        value_type=value_type,
        read=True,
        write=write,
        default=default,
    )


def command_leaf(name: str) -> NodeDefinition:
    return leaf(name, "text", write=True)


# ---------------------------------------------------------------------------
# Fixed leaf sets
# ---------------------------------------------------------------------------
MEMBERS_CONTAINER = container("Members")
CHANNELS_CONTAINER = container("Channels")

MEMBER_LEAVES: dict[str, NodeDefinition] = {
    "tag": leaf("User tag", "text"),
    "displayName": leaf("Display name", "text"),
    "roles": leaf("Roles", "text"),
    "joinedAt": leaf("Joined at", "date", "number"),
    "voiceChannel": leaf("Voice channel", "text"),
    "voiceDisconnect": leaf("Voice disconnect", "button", "boolean", write=True),
    "voiceSelfDeaf": leaf("Voice self deafen", "indicator", "boolean"),
    "voiceServerDeaf": leaf("Voice server deafen", "switch", "boolean", write=True),
    "voiceSelfMute": leaf("Voice self mute", "indicator", "boolean"),
    "voiceServerMute": leaf("Voice server mute", "switch", "boolean", write=True),
    LEAF_JSON: leaf("JSON data", "json"),
}

CHANNEL_LEAVES: dict[str, NodeDefinition] = {
    LEAF_JSON: leaf("JSON data", "json"),
    "memberCount": leaf("Member count", "value", "number"),
    "members": leaf("Members", "text"),
}

MESSAGE_LEAVES: dict[str, NodeDefinition] = {
    LEAF_MESSAGE: leaf("Last message", "text"),
    LEAF_MESSAGE_ID: leaf("Last message ID", "text"),
    LEAF_MESSAGE_AUTHOR: leaf("Last message author", "text"),
    LEAF_MESSAGE_TIMESTAMP: leaf("Last message timestamp", "date", "number"),
    LEAF_MESSAGE_JSON: leaf("Last message JSON data", "json"),
}

COMMAND_LEAVES: dict[str, NodeDefinition] = {
    ACTION_SEND: command_leaf("Send message"),
    ACTION_SEND_FILE: command_leaf("Send file"),
    ACTION_SEND_REPLY: command_leaf("Send reply"),
    ACTION_SEND_REACTION: command_leaf("Send reaction"),
}

USER_LEAVES: dict[str, NodeDefinition] = {
    LEAF_JSON: leaf("JSON data", "json"),
    "tag": leaf("User tag", "text"),
    "avatarUrl": leaf("Avatar", "media.link"),
    "bot": leaf("Bot", "indicator", "boolean"),
    "status": leaf("Status", "text"),
    "activityType": leaf("Activity type", "text"),
    "activityName": leaf("Activity name", "text"),
}

# DM author is always the user itself, so no messageAuthor leaf
USER_MESSAGE_LEAVES: dict[str, NodeDefinition] = {
    k: v for k, v in MESSAGE_LEAVES.items() if k != LEAF_MESSAGE_AUTHOR
}

BOT_LEAVES: dict[str, NodeDefinition] = {
    "bot.status": leaf("Bot status", "text", write=True),
    "bot.activityType": leaf("Bot activity type", "text", write=True),
    "bot.activityName": leaf("Bot activity name", "text", write=True),
    "info.connection": leaf("Connected to Discord", "indicator.connected", "boolean"),
}
