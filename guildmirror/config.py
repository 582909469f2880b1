"""
guildmirror.config — YAML Configuration Loader
===============================================

**Why this file exists:**
This module reads ``config.yaml`` for every behavioural switch of the
mirror (which events trigger a resync, how inbound messages are filtered,
who may talk to the bot).  Secrets (``DISCORD_TOKEN``, ``DATABASE_URL``,
``JWT_SECRET``) stay in ``.env``.

Usage::

    from guildmirror.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.namespace)         # "discord.0"
    print(cfg.enable_authorization)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from guildmirror.constants import TEXT_COMMAND_RESPONSE_MODES


# ---------------------------------------------------------------------------
# Authorization grants as configured
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AuthorizedUser:
    """Grant for a single Discord user."""

    user_id: str
    read: bool = False
    write: bool = False
    text_command: bool = False


@dataclass(frozen=True, slots=True)
class AuthorizedServerRole:
    """Grant for every member holding *role_id* on *server_id*."""

    server_id: str
    role_id: str
    read: bool = False
    write: bool = False
    text_command: bool = False


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MirrorConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Every mirrored key starts with this namespace
    namespace: str = "discord.0"

    # Bot identity
    bot_name: str = ""

    # Inbound messages
    process_all_messages_in_server_channel: bool = False
    react_on_mentions: bool = True
    react_on_mentions_emoji: str = "\U0001f44d"  # 👍
    react_to_unauthorized_mentions: bool = False
    process_messages_from_unauthorized_users: bool = False

    # Text-command collaborator
    text_command_url: str = ""
    text_command_respond_with: str = "message"

    # Which remote events are observed
    dynamic_server_updates: bool = True
    observe_user_presence: bool = False
    observe_user_voice_state: bool = False

    # Authorization
    enable_authorization: bool = True
    authorized_users: tuple[AuthorizedUser, ...] = field(default_factory=tuple)
    authorized_server_roles: tuple[AuthorizedServerRole, ...] = field(default_factory=tuple)
    log_unauthorized: str = "debug"  # "debug" or "silent"

    # Periodic full resync, in minutes (0 = only event/startup driven)
    resync_interval_minutes: int = 0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> MirrorConfig:
    """Read *path* and return a :class:`MirrorConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If an enumerated option holds an unknown value.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return parse_config(raw)


def parse_config(raw: dict) -> MirrorConfig:
    """Build a :class:`MirrorConfig` from an already-parsed mapping."""
    respond_with = str(raw.get("text_command_respond_with", "message"))
    if respond_with not in TEXT_COMMAND_RESPONSE_MODES:
        raise ValueError(
            f"text_command_respond_with must be one of "
            f"{sorted(TEXT_COMMAND_RESPONSE_MODES)}, got {respond_with!r}"
        )

    log_unauthorized = str(raw.get("log_unauthorized", "debug"))
    if log_unauthorized not in ("debug", "silent"):
        raise ValueError(
            f"log_unauthorized must be 'debug' or 'silent', got {log_unauthorized!r}"
        )

    users = tuple(
        AuthorizedUser(
            user_id=str(u["user_id"]),
            read=bool(u.get("read", False)),
            write=bool(u.get("write", False)),
            text_command=bool(u.get("text_command", False)),
        )
        for u in raw.get("authorized_users") or []
    )
    roles = tuple(
        AuthorizedServerRole(
            server_id=str(r["server_id"]),
            role_id=str(r["role_id"]),
            read=bool(r.get("read", False)),
            write=bool(r.get("write", False)),
            text_command=bool(r.get("text_command", False)),
        )
        for r in raw.get("authorized_server_roles") or []
    )

    return MirrorConfig(
        namespace=str(raw.get("namespace", "discord.0")),
        bot_name=str(raw.get("bot_name") or ""),
        process_all_messages_in_server_channel=bool(
            raw.get("process_all_messages_in_server_channel", False)
        ),
        react_on_mentions=bool(raw.get("react_on_mentions", True)),
        react_on_mentions_emoji=str(raw.get("react_on_mentions_emoji", "\U0001f44d")),
        react_to_unauthorized_mentions=bool(raw.get("react_to_unauthorized_mentions", False)),
        process_messages_from_unauthorized_users=bool(
            raw.get("process_messages_from_unauthorized_users", False)
        ),
        text_command_url=str(raw.get("text_command_url") or ""),
        text_command_respond_with=respond_with,
        dynamic_server_updates=bool(raw.get("dynamic_server_updates", True)),
        observe_user_presence=bool(raw.get("observe_user_presence", False)),
        observe_user_voice_state=bool(raw.get("observe_user_voice_state", False)),
        enable_authorization=bool(raw.get("enable_authorization", True)),
        authorized_users=users,
        authorized_server_roles=roles,
        log_unauthorized=log_unauthorized,
        resync_interval_minutes=int(raw.get("resync_interval_minutes", 0)),
    )
