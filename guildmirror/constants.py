"""
guildmirror.constants — Shared Constants
=========================================

Single source of truth for the leaf names of the mirrored key surface and
the presence/activity vocabulary.  Import from here instead of repeating
string literals in services.
"""

from __future__ import annotations

import discord

# ---------------------------------------------------------------------------
# Message mirror + outbound command leaves
# ---------------------------------------------------------------------------
LEAF_MESSAGE = "message"
LEAF_MESSAGE_ID = "messageId"
LEAF_MESSAGE_AUTHOR = "messageAuthor"
LEAF_MESSAGE_TIMESTAMP = "messageTimestamp"
LEAF_MESSAGE_JSON = "messageJson"
LEAF_JSON = "json"

ACTION_SEND = "send"
ACTION_SEND_FILE = "sendFile"
ACTION_SEND_REPLY = "sendReply"
ACTION_SEND_REACTION = "sendReaction"

SEND_ACTIONS: tuple[str, ...] = (
    ACTION_SEND,
    ACTION_SEND_FILE,
    ACTION_SEND_REPLY,
    ACTION_SEND_REACTION,
)

# ---------------------------------------------------------------------------
# Voice moderation leaves (suffix after "voice")
# ---------------------------------------------------------------------------
VOICE_DISCONNECT = "Disconnect"
VOICE_SERVER_MUTE = "ServerMute"
VOICE_SERVER_DEAF = "ServerDeaf"

VOICE_ACTIONS: tuple[str, ...] = (VOICE_DISCONNECT, VOICE_SERVER_MUTE, VOICE_SERVER_DEAF)

# ---------------------------------------------------------------------------
# Bot control + info keys (relative to the namespace)
# ---------------------------------------------------------------------------
BOT_STATUS = "bot.status"
BOT_ACTIVITY_TYPE = "bot.activityType"
BOT_ACTIVITY_NAME = "bot.activityName"
INFO_CONNECTION = "info.connection"

# ---------------------------------------------------------------------------
# Channel icons
# ---------------------------------------------------------------------------
ICON_TEXT_CHANNEL = "channel-text.svg"
ICON_VOICE_CHANNEL = "channel-voice.svg"

TEXT_CHANNEL_TYPES: frozenset[discord.ChannelType] = frozenset({
    discord.ChannelType.text,
    discord.ChannelType.news,
})

VOICE_CHANNEL_TYPES: frozenset[discord.ChannelType] = frozenset({
    discord.ChannelType.voice,
    discord.ChannelType.stage_voice,
})

# ---------------------------------------------------------------------------
# Presence vocabulary
# ---------------------------------------------------------------------------
VALID_PRESENCE_STATUS: tuple[str, ...] = ("online", "idle", "dnd", "invisible")

ACTIVITY_TYPES: dict[str, discord.ActivityType] = {
    "PLAYING": discord.ActivityType.playing,
    "STREAMING": discord.ActivityType.streaming,
    "LISTENING": discord.ActivityType.listening,
    "WATCHING": discord.ActivityType.watching,
    "COMPETING": discord.ActivityType.competing,
}

# ---------------------------------------------------------------------------
# Text-command collaborator
# ---------------------------------------------------------------------------
TEXT_COMMAND_RESPONSE_MODES: frozenset[str] = frozenset({"message", "reply", "none"})


def user_tag(user) -> str:
    """Return ``name#1234`` for legacy users, plain ``name`` otherwise."""
    discriminator = getattr(user, "discriminator", "0") or "0"
    if discriminator == "0":
        return user.name
    return f"{user.name}#{discriminator}"
