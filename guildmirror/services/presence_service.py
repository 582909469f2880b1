"""
guildmirror.services.presence_service — Presence Projection
===========================================================

Turns a member's raw presence (status + activities) into the flat
``status`` / ``activityType`` / ``activityName`` triple mirrored under
``users.<id>``, for both the reconciliation pass and live presence updates.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from guildmirror.engine.cache import WriteSuppressionCache
    from guildmirror.engine.paths import PathGrammar
    from guildmirror.services.object_store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PresenceSnapshot:
    status: str = ""
    activity_type: str = ""
    activity_name: str = ""

    def as_json_fields(self) -> dict[str, str]:
        return {
            "status": self.status,
            "activityType": self.activity_type,
            "activityName": self.activity_name,
        }


EMPTY_PRESENCE = PresenceSnapshot()


def project_presence(member: discord.Member | None) -> PresenceSnapshot:
    """Normalize the presence of *member*; ``None`` yields the empty snapshot.

    Only the first activity counts.  For a custom status the activity name
    is the status text the user typed.
    """
    if member is None:
        return EMPTY_PRESENCE

    status = str(member.status) if member.status is not None else ""
    activities = member.activities or ()
    if not activities:
        return PresenceSnapshot(status=status)

    activity = activities[0]
    activity_type = activity.type.name.upper()
    if activity.type is discord.ActivityType.custom:
        name = getattr(activity, "state", None) or activity.name
    else:
        name = activity.name
    return PresenceSnapshot(status=status, activity_type=activity_type, activity_name=name or "")


class PresenceProjector:
    """Writes projected presences through the store and the snapshot cache."""

    def __init__(
        self,
        grammar: PathGrammar,
        cache: WriteSuppressionCache,
        store: ObjectStore,
        *,
        enabled: bool,
    ) -> None:
        self.grammar = grammar
        self.cache = cache
        self.store = store
        self.enabled = enabled

    async def write_leaves(self, user_id: str, snapshot: PresenceSnapshot) -> int:
        """Write the three presence leaves; returns how many changed."""
        prefix = self.grammar.user(user_id)
        written = 0
        for name, value in (
            ("status", snapshot.status),
            ("activityType", snapshot.activity_type),
            ("activityName", snapshot.activity_name),
        ):
            if await self.store.set_state_changed(self.grammar.leaf(prefix, name), value, ack=True):
                written += 1
        return written

    async def project(self, user_id: str, member: discord.Member | None) -> PresenceSnapshot:
        """Projection used by the reconciliation pass.

        With presence observation off the empty snapshot is returned and no
        leaf is touched.
        """
        if not self.enabled:
            return EMPTY_PRESENCE
        snapshot = project_presence(member)
        await self.write_leaves(user_id, snapshot)
        return snapshot

    async def apply_update(self, member: discord.Member) -> bool:
        """Live presence update for a user the mirror already knows.

        Rewrites the presence leaves and merges the new fields into the
        user's cached ``json`` snapshot.  Returns False for unknown users.
        """
        if not self.enabled:
            return False

        user_id = str(member.id)
        prefix = self.grammar.user(user_id)
        if not self.cache.has_definition(prefix):
            logger.debug("Presence update for unmirrored user %s ignored", user_id)
            return False

        snapshot = project_presence(member)
        await self.write_leaves(user_id, snapshot)

        json_path = self.grammar.leaf(prefix, "json")
        current = self.cache.get_snapshot(json_path)
        if current is not None:
            current.update(snapshot.as_json_fields())
            await self.cache.upsert_snapshot(json_path, current)

        logger.debug("Presence of %s: %s", user_id, asdict(snapshot))
        return True
