"""
guildmirror.services.message_service — Inbound Message Mirroring
================================================================

Maps a new Discord message to the key prefix of its channel (or of the
author, for DMs), writes the ``message*`` leaves and the ``messageJson``
snapshot, and optionally hands the content to the text-command
collaborator.

Filtering, in order:

1. the bot's own messages and interaction responses are ignored
2. mentions of the bot get a reaction (authorized authors, or anyone when
   ``react_to_unauthorized_mentions`` is set)
3. unauthorized authors are dropped unless
   ``process_messages_from_unauthorized_users``
4. server-channel messages that do not mention the bot are dropped unless
   ``process_all_messages_in_server_channel``
5. the prefix must be a registered message target
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import discord
import httpx

from guildmirror.constants import (
    LEAF_MESSAGE,
    LEAF_MESSAGE_AUTHOR,
    LEAF_MESSAGE_ID,
    LEAF_MESSAGE_JSON,
    LEAF_MESSAGE_TIMESTAMP,
    TEXT_CHANNEL_TYPES,
    user_tag,
)
from guildmirror.engine.auth import principal_from_author

if TYPE_CHECKING:
    from guildmirror.config import MirrorConfig
    from guildmirror.engine.auth import AuthorizationPolicy
    from guildmirror.engine.cache import WriteSuppressionCache
    from guildmirror.engine.paths import PathGrammar
    from guildmirror.engine.registry import TargetRegistry
    from guildmirror.services.object_store import ObjectStore
    from guildmirror.services.text_command import HttpTextCommandClient

logger = logging.getLogger(__name__)


class MessageIngestionRouter:

    def __init__(
        self,
        config: MirrorConfig,
        grammar: PathGrammar,
        cache: WriteSuppressionCache,
        store: ObjectStore,
        registry: TargetRegistry,
        policy: AuthorizationPolicy,
        bot_user_id,
        text_command: HttpTextCommandClient | None = None,
    ) -> None:
        self.config = config
        self.grammar = grammar
        self.cache = cache
        self.store = store
        self.registry = registry
        self.policy = policy
        self._bot_user_id = bot_user_id
        self.text_command = text_command
        self._background: set[asyncio.Task] = set()

    @property
    def bot_user_id(self) -> int | None:
        value = self._bot_user_id() if callable(self._bot_user_id) else self._bot_user_id
        return int(value) if value is not None else None

    # -------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------
    def target_prefix(self, message: discord.Message) -> str | None:
        """Key prefix a message is mirrored under, or ``None`` if unsupported."""
        channel = message.channel
        if channel.type in TEXT_CHANNEL_TYPES and message.guild is not None:
            return self.grammar.channel(
                message.guild.id, channel.id, getattr(channel, "category_id", None),
            )
        if channel.type is discord.ChannelType.private:
            return self.grammar.user(message.author.id)
        return None

    def _log_unauthorized(self, msg: str, *args: Any) -> None:
        if self.config.log_unauthorized == "debug":
            logger.debug(msg, *args)

    async def ingest(self, message: discord.Message) -> str | None:
        """Mirror *message*; returns the prefix written to, or ``None`` if dropped."""
        bot_id = self.bot_user_id
        if bot_id is None:
            return None
        if message.interaction_metadata is not None:
            return None

        author = message.author
        if author.id == bot_id:
            return None

        principal = principal_from_author(author)
        authorized = self.policy.is_authorized(principal)
        mentioned = any(u.id == bot_id for u in message.mentions)

        if (
            mentioned
            and self.config.react_on_mentions
            and (authorized or self.config.react_to_unauthorized_mentions)
        ):
            try:
                await message.add_reaction(self.config.react_on_mentions_emoji)
            except discord.DiscordException as exc:
                logger.warning("Could not react to message %s: %s", message.id, exc)

        if not authorized and not self.config.process_messages_from_unauthorized_users:
            self._log_unauthorized(
                "Ignoring message from unauthorized user %s (id:%s)", user_tag(author), author.id,
            )
            return None

        in_server = message.guild is not None
        if in_server and not mentioned and not self.config.process_all_messages_in_server_channel:
            logger.debug("Server channel message without mention ignored")
            return None

        prefix = self.target_prefix(message)
        if prefix is None:
            logger.debug("Message %s in unsupported channel type %s", message.id, message.channel.type)
            return None
        if not self.registry.accepts_messages(prefix):
            logger.debug("%s is not registered for receiving messages", prefix)
            return None

        await self._write(prefix, message, mentioned, authorized)

        message_path = self.grammar.leaf(prefix, LEAF_MESSAGE)
        if (
            message.content
            and self.text_command is not None
            and self.registry.text_command_enabled(message_path)
        ):
            if self.policy.is_authorized(principal, text_command=True):
                task = asyncio.create_task(self._forward_text_command(message))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            else:
                self._log_unauthorized(
                    "User %s (id:%s) not allowed to use text commands", user_tag(author), author.id,
                )

        return prefix

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def message_json(self, message: discord.Message, mentioned: bool, authorized: bool) -> dict[str, Any]:
        snapshot: dict[str, Any] = {
            "content": message.content,
            "attachments": [
                {"attachment": a.url, "name": a.filename, "size": a.size, "id": str(a.id)}
                for a in message.attachments
            ],
            "id": str(message.id),
            "mentions": [
                {"id": str(m.id), "tag": user_tag(m), "displayName": m.display_name}
                for m in (message.mentions if message.guild is not None else ())
            ],
            "mentioned": mentioned,
            "timestamp": int(message.created_at.timestamp() * 1000),
            "authorized": authorized,
        }
        if message.guild is not None:
            author = message.author
            snapshot["author"] = {
                "id": str(author.id),
                "tag": user_tag(author),
                "displayName": getattr(author, "display_name", None) or author.name,
            }
        return snapshot

    async def _write(self, prefix: str, message: discord.Message, mentioned: bool, authorized: bool) -> None:
        snapshot = self.message_json(message, mentioned, authorized)
        leaf = self.grammar.leaf

        writes = [
            self.store.set_state(leaf(prefix, LEAF_MESSAGE), message.content, ack=True),
            self.store.set_state(leaf(prefix, LEAF_MESSAGE_ID), str(message.id), ack=True),
            self.store.set_state(leaf(prefix, LEAF_MESSAGE_TIMESTAMP), snapshot["timestamp"], ack=True),
            self.cache.upsert_snapshot(leaf(prefix, LEAF_MESSAGE_JSON), snapshot),
        ]
        if message.guild is not None:
            writes.append(
                self.store.set_state(leaf(prefix, LEAF_MESSAGE_AUTHOR), user_tag(message.author), ack=True)
            )
        await asyncio.gather(*writes)
        logger.debug("Mirrored message %s to %s", message.id, prefix)

    # -------------------------------------------------------------------
    # Text-command forwarding
    # -------------------------------------------------------------------
    async def _forward_text_command(self, message: discord.Message) -> None:
        mode = self.config.text_command_respond_with
        try:
            response = await self.text_command.send(message.content)
            if not response:
                logger.debug("Empty response from text command service")
                return
            if mode == "reply":
                await message.reply(response)
            elif mode == "message":
                await message.channel.send(response)
        except (httpx.HTTPError, discord.DiscordException) as exc:
            logger.warning("Text command for message %s failed: %s", message.id, exc)

    async def drain(self) -> None:
        """Wait for pending text-command forwards (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
