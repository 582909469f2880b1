"""
guildmirror.bot.cogs.tasks — Periodic Background Tasks
======================================================

- **Periodic resync** — every ``resync_interval_minutes`` (disabled at 0),
  requests a full reconciliation pass.  Requests coalesce with any pass
  already running.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

if TYPE_CHECKING:
    from guildmirror.bot.core import MirrorBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background tasks."""

    def __init__(self, bot: MirrorBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        minutes = self.bot.cfg.resync_interval_minutes
        if minutes > 0:
            self.resync_loop.change_interval(minutes=minutes)
            self.resync_loop.start()
            logger.info("Periodic resync every %d minutes", minutes)

    async def cog_unload(self) -> None:
        self.resync_loop.cancel()

    @tasks.loop(minutes=60)
    async def resync_loop(self):
        """Request a full reconciliation pass."""
        try:
            await self.bot.reconciler.request("periodic")
        except Exception:
            logger.exception("Periodic resync failed", extra={"task": "resync"})

    @resync_loop.before_loop
    async def _wait_resync(self):
        await self.bot.wait_until_ready()


async def setup(bot: MirrorBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
