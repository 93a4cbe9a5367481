"""Mute scheduler lifecycle cog.

The timers themselves live in ``MuteScheduler``; this cog only runs the
restart recovery pass once the gateway is ready and stops the timers when
the cog is unloaded.
"""

import asyncio
from typing import Optional

import discord
from discord.ext import commands

from modwarden.configuration.app_configuration import app_config
from modwarden.moderation.engine import ModerationEngine
from modwarden.moderation.mute_scheduler import RecoveryReport
from modwarden.util.logger import get_logger

logger = get_logger("scheduler_cog")


class MuteSchedulerCog(commands.Cog):
    """
    Runs ``MuteScheduler.recover`` on the first ``on_ready``.

    ``on_ready`` fires again after every reconnect; recovery only runs once
    per process because the timers survive reconnects.
    """

    def __init__(self, bot: discord.Bot, engine: ModerationEngine, *, recover_on_ready: Optional[bool] = None) -> None:
        self.bot = bot
        self.engine = engine
        self.recover_on_ready = app_config.recover_on_ready if recover_on_ready is None else recover_on_ready
        self.last_report: Optional[RecoveryReport] = None
        self._recovered = False

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        if self._recovered or not self.recover_on_ready:
            return
        self._recovered = True

        try:
            self.last_report = await self.engine.scheduler.recover()
        except Exception:
            self._recovered = False
            logger.exception("[MUTE SCHEDULER] Recovery pass failed; will retry on the next on_ready")
            return
        logger.info("[MUTE SCHEDULER] Ready (%d timer(s) armed)", len(self.last_report.armed))

    def cog_unload(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("[MUTE SCHEDULER] Unloaded outside the event loop; timers were not cancelled")
            return
        self._shutdown_task = loop.create_task(self.engine.scheduler.shutdown())
        logger.info("[MUTE SCHEDULER] Stopped")


def setup(bot: discord.Bot, engine: ModerationEngine) -> None:
    bot.add_cog(MuteSchedulerCog(bot, engine))
