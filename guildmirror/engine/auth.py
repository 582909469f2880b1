"""
guildmirror.engine.auth — Authorization Policy
==============================================

Merges per-user and per-(server, role) grants into the effective capability
set of an acting principal.  Grants combine with logical OR, field by field;
a role grant can only ever add capabilities to a user grant, never remove
them.

Pure logic: no store, no Discord calls.  :func:`principal_from_author`
is the only place that looks at a discord.py object, and only reads
attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from guildmirror.config import MirrorConfig


@dataclass(frozen=True, slots=True)
class Grant:
    read: bool = False
    write: bool = False
    text_command: bool = False

    def merge(self, other: Grant) -> Grant:
        return Grant(
            read=self.read or other.read,
            write=self.write or other.write,
            text_command=self.text_command or other.text_command,
        )


@dataclass(frozen=True, slots=True)
class Principal:
    """Someone issuing a command: a bare user, or a server member with roles."""

    user_id: str
    server_id: str | None = None
    role_ids: tuple[str, ...] = field(default_factory=tuple)


def principal_from_author(author) -> Principal:
    """Build a :class:`Principal` from a ``discord.User`` or ``discord.Member``."""
    guild = getattr(author, "guild", None)
    if guild is None:
        return Principal(user_id=str(author.id))
    roles = getattr(author, "roles", None) or []
    return Principal(
        user_id=str(author.id),
        server_id=str(guild.id),
        role_ids=tuple(str(r.id) for r in roles),
    )


class AuthorizationPolicy:
    """Answer "may this principal do X?" from a config snapshot."""

    def __init__(self, config: MirrorConfig) -> None:
        self.enabled = config.enable_authorization
        self._user_grants: dict[str, Grant] = {}
        self._role_grants: dict[tuple[str, str], Grant] = {}

        for u in config.authorized_users:
            grant = Grant(u.read, u.write, u.text_command)
            prev = self._user_grants.get(u.user_id)
            self._user_grants[u.user_id] = prev.merge(grant) if prev else grant

        for r in config.authorized_server_roles:
            key = (r.server_id, r.role_id)
            grant = Grant(r.read, r.write, r.text_command)
            prev = self._role_grants.get(key)
            self._role_grants[key] = prev.merge(grant) if prev else grant

    def effective_grant(self, principal: Principal) -> Grant | None:
        """Return the OR-merged grant, or ``None`` when nothing applies."""
        grant = self._user_grants.get(principal.user_id)

        if principal.server_id is not None:
            for role_id in principal.role_ids:
                role_grant = self._role_grants.get((principal.server_id, role_id))
                if role_grant is None:
                    continue
                grant = role_grant if grant is None else grant.merge(role_grant)

        return grant

    def is_authorized(
        self,
        principal: Principal,
        *,
        read: bool = False,
        write: bool = False,
        text_command: bool = False,
    ) -> bool:
        """Check *principal* against the requested capabilities.

        With no capability requested, holding any grant is sufficient.
        """
        if not self.enabled:
            return True

        grant = self.effective_grant(principal)
        if grant is None:
            return False

        if read and not grant.read:
            return False
        if write and not grant.write:
            return False
        if text_command and not grant.text_command:
            return False
        return True
