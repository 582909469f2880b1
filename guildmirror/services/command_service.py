"""
guildmirror.services.command_service — Outbound Command Router
==============================================================

Turns an unacknowledged write on a ``send`` / ``sendFile`` / ``sendReply``
/ ``sendReaction`` key into exactly one Discord call.

    path  ──parse_send_target──►  SendTarget (server+channel, or user)
    value ──payload parser─────►  MessagePayload / ReactionPayload / ParseFailure
                                   │
                                   ▼
                     DiscordGraph.send / DiscordGraph.react

The target is re-resolved on every dispatch; nothing about the remote
handle is cached between commands.  Any failure (unknown target, bad
payload, Discord error) yields a failed :class:`DispatchResult` and the
triggering write stays unacknowledged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import discord
import httpx

from guildmirror.constants import (
    ACTION_SEND,
    ACTION_SEND_FILE,
    ACTION_SEND_REACTION,
    ACTION_SEND_REPLY,
    LEAF_MESSAGE_ID,
)
from guildmirror.engine.payloads import (
    ParseFailure,
    ReactionPayload,
    parse_reaction,
    parse_reply,
    parse_send,
    parse_send_file,
    split_first_pipe,
)
from guildmirror.services.remote_graph import RemoteGraphError

if TYPE_CHECKING:
    from guildmirror.engine.auth import AuthorizationPolicy, Principal
    from guildmirror.engine.paths import PathGrammar, SendTarget
    from guildmirror.services.object_store import ObjectStore
    from guildmirror.services.remote_graph import DiscordGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchResult:
    ok: bool
    message_id: str | None = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


def _failed(path: str, reason: str) -> DispatchResult:
    logger.warning("Command %s not sent: %s", path, reason)
    return DispatchResult(ok=False, reason=reason)


class OutboundCommandRouter:

    def __init__(
        self,
        grammar: PathGrammar,
        store: ObjectStore,
        graph: DiscordGraph,
        policy: AuthorizationPolicy,
    ) -> None:
        self.grammar = grammar
        self.store = store
        self.graph = graph
        self.policy = policy

    async def _last_message_id(self, target: SendTarget) -> str | None:
        state = await self.store.get_state(self.grammar.leaf(target.prefix, LEAF_MESSAGE_ID))
        if state is None or state.val in (None, ""):
            return None
        return str(state.val)

    async def parse(self, target: SendTarget, raw: str):
        """Decode *raw* for the action of *target*."""
        if target.action == ACTION_SEND:
            return parse_send(raw)
        if target.action == ACTION_SEND_FILE:
            return parse_send_file(raw)

        explicit_id, _ = split_first_pipe(raw)
        fallback = None
        if explicit_id is None:
            logger.debug("Using last mirrored message of %s as reference", target.prefix)
            fallback = await self._last_message_id(target)

        if target.action == ACTION_SEND_REPLY:
            return parse_reply(raw, fallback)
        if target.action == ACTION_SEND_REACTION:
            return parse_reaction(raw, fallback)
        return ParseFailure(f"unknown action {target.action!r}")

    async def dispatch(
        self,
        path: str,
        raw_value: Any,
        principal: Principal | None = None,
    ) -> DispatchResult:
        """Route one command write.  A truthy result means: ack the write."""
        if not self.graph.is_ready():
            return _failed(path, "client is not ready")

        if principal is not None and not self.policy.is_authorized(principal, write=True):
            logger.debug("Principal %s may not send commands", principal.user_id)
            return DispatchResult(ok=False, reason="not authorized")

        target = self.grammar.parse_send_target(path)
        if target is None:
            return _failed(path, "not a command key")

        if not isinstance(raw_value, str):
            return _failed(path, "value is not a string")
        if not raw_value:
            logger.debug("Command %s written with empty value", path)
            return DispatchResult(ok=False, reason="empty value")

        payload = await self.parse(target, raw_value)
        if isinstance(payload, ParseFailure):
            return _failed(path, payload.reason)

        try:
            if isinstance(payload, ReactionPayload):
                message = await self.graph.react(target, payload.message_id, payload.emoji)
                logger.debug("Reacted %s to message %s via %s", payload.emoji, message.id, path)
            else:
                message = await self.graph.send(target, payload)
                logger.debug("Sent message %s via %s", message.id, path)
        except RemoteGraphError as exc:
            return _failed(path, str(exc))
        except (discord.DiscordException, httpx.HTTPError, OSError) as exc:
            return _failed(path, f"{type(exc).__name__}: {exc}")

        return DispatchResult(ok=True, message_id=str(message.id))
