"""
guildmirror.engine.payloads — Outbound Payload Parsers
======================================================

Small parsers for the string values written to ``send``, ``sendFile``,
``sendReply`` and ``sendReaction`` keys.  Each one returns a tagged result:
a success dataclass carrying the decoded fields, or :class:`ParseFailure`
with a human-readable reason.  None of them raise and none of them touch
the network; turning a payload into a Discord call is the router's job.

Grammar::

    send          plain text, or a JSON object {"content", "files", "embeds"}
    sendFile      <file>[|<content>]       file = path, URL or data URI
    sendReply     [<messageId>|]<content>  missing id -> last mirrored id
    sendReaction  [<messageId>|]<emoji>    missing id -> last mirrored id
"""

from __future__ import annotations

import base64
import binascii
import json
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import discord

# data:<type>/<subtype>;base64,<payload>
_DATA_URI = re.compile(r"^data:([\w.+-]+)/([\w.+-]+);base64,(.*)$", re.DOTALL)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ParseFailure:
    reason: str

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class FileRef:
    """One attachment: either inline bytes or a path/URL to load at send time."""

    name: str
    source: str | None = None
    data: bytes | None = None
    description: str | None = None

    @property
    def is_url(self) -> bool:
        return bool(self.source) and self.source.startswith(("http://", "https://"))


@dataclass(frozen=True, slots=True)
class MessagePayload:
    content: str | None = None
    files: tuple[FileRef, ...] = field(default_factory=tuple)
    embeds: tuple[discord.Embed, ...] = field(default_factory=tuple)
    reply_to: str | None = None


@dataclass(frozen=True, slots=True)
class ReactionPayload:
    message_id: str
    emoji: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def split_first_pipe(raw: str) -> tuple[str | None, str]:
    """Split on the first ``|``; a pipe at position 0 does not count."""
    idx = raw.find("|")
    if idx > 0:
        return raw[:idx], raw[idx + 1:]
    return None, raw


def file_ref_from_string(value: str, name: str | None = None) -> FileRef | ParseFailure:
    """Build a :class:`FileRef` from a path, ``file://`` URL, http(s) URL or data URI."""
    value = value.strip()
    if not value:
        return ParseFailure("empty file reference")

    m = _DATA_URI.match(value)
    if m:
        major, minor, encoded = m.groups()
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            return ParseFailure("invalid base64 data in file reference")
        return FileRef(name=name or f"{major}.{minor}", data=data)

    if value.startswith("file://"):
        value = value[len("file://"):]

    if value.startswith(("http://", "https://")):
        basename = posixpath.basename(urlparse(value).path)
    else:
        basename = posixpath.basename(value.replace("\\", "/"))

    return FileRef(name=name or basename or "file", source=value)


def _file_ref_from_option(entry: Any) -> FileRef | ParseFailure:
    if isinstance(entry, str):
        return file_ref_from_string(entry)
    if isinstance(entry, dict):
        attachment = entry.get("attachment")
        if not isinstance(attachment, str):
            return ParseFailure("file entry needs a string 'attachment'")
        ref = file_ref_from_string(attachment, entry.get("name"))
        if isinstance(ref, ParseFailure) or not entry.get("description"):
            return ref
        return FileRef(
            name=ref.name, source=ref.source, data=ref.data,
            description=str(entry["description"]),
        )
    return ParseFailure(f"unsupported file entry of type {type(entry).__name__}")


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------
def parse_send(raw: str) -> MessagePayload | ParseFailure:
    """Parse a ``send`` value: JSON message options or plain content."""
    if not raw:
        return ParseFailure("empty value")

    if not (raw.startswith("{") and raw.endswith("}")):
        return MessagePayload(content=raw)

    try:
        options = json.loads(raw)
    except json.JSONDecodeError as exc:
        return ParseFailure(f"value looks like JSON but cannot be parsed: {exc.msg}")

    if not isinstance(options, dict):
        return ParseFailure("JSON value is not an object")

    content = options.get("content")
    files = options.get("files")
    embeds = options.get("embeds")

    if not content and not files:
        return ParseFailure("JSON message options need 'content' or 'files'")
    if files is not None and not isinstance(files, list):
        return ParseFailure("'files' must be an array")
    if embeds is not None and not isinstance(embeds, list):
        return ParseFailure("'embeds' must be an array")

    refs: list[FileRef] = []
    for entry in files or []:
        ref = _file_ref_from_option(entry)
        if isinstance(ref, ParseFailure):
            return ref
        refs.append(ref)

    built: list[discord.Embed] = []
    for embed in embeds or []:
        if not isinstance(embed, dict):
            return ParseFailure("every embed must be an object")
        try:
            built.append(discord.Embed.from_dict(embed))
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            return ParseFailure(f"invalid embed: {exc}")

    return MessagePayload(
        content=str(content) if content else None,
        files=tuple(refs),
        embeds=tuple(built),
    )


def parse_send_file(raw: str) -> MessagePayload | ParseFailure:
    """Parse a ``sendFile`` value: ``<file>[|<content>]``."""
    if not raw:
        return ParseFailure("empty value")

    # A data URI may itself contain a pipe only after the comma, never before
    file_part, content = split_first_pipe(raw)
    if file_part is None:
        file_part, content = raw, None

    ref = file_ref_from_string(file_part)
    if isinstance(ref, ParseFailure):
        return ref
    return MessagePayload(content=content or None, files=(ref,))


def _parse_reference(raw: str, fallback_id: str | None) -> tuple[str, str] | ParseFailure:
    message_id, rest = split_first_pipe(raw)
    if message_id is None:
        message_id = fallback_id
    message_id = (message_id or "").strip()
    if not message_id:
        return ParseFailure("no message reference and no mirrored message to fall back to")
    if not rest:
        return ParseFailure("no content")
    return message_id, rest


def parse_reply(raw: str, fallback_id: str | None) -> MessagePayload | ParseFailure:
    """Parse a ``sendReply`` value: ``[<messageId>|]<content>``."""
    ref = _parse_reference(raw, fallback_id)
    if isinstance(ref, ParseFailure):
        return ref
    message_id, content = ref
    return MessagePayload(content=content, reply_to=message_id)


def parse_reaction(raw: str, fallback_id: str | None) -> ReactionPayload | ParseFailure:
    """Parse a ``sendReaction`` value: ``[<messageId>|]<emoji>``."""
    ref = _parse_reference(raw, fallback_id)
    if isinstance(ref, ParseFailure):
        return ref
    message_id, emoji = ref
    return ReactionPayload(message_id=message_id, emoji=emoji.strip())
