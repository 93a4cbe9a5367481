"""
Modwarden Discord Bot
=====================

A moderation bot that records infractions, escalates repeated warnings into
mutes and bans, lifts temporary mutes on time (also across restarts) and
runs an appeal workflow for users.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODWARDEN_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODWARDEN_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from modwarden.configuration.app_configuration import app_config
from modwarden.configuration.community_policy import CommunityPolicyStore
from modwarden.database.db_connection import db_connection
from modwarden.moderation.actuator import DiscordPunishmentActuator
from modwarden.moderation.engine import ModerationEngine
from modwarden.moderation.notifications import DiscordNotificationSink
from modwarden.util.logger import get_logger, handle_exception

logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents needed to resolve members and manage their roles."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    return intents


def load_cogs(discord_bot_instance: discord.Bot, engine: ModerationEngine) -> None:
    from modwarden.cog import appeal_cmds, moderation_cmds, scheduler_cog

    moderation_cmds.setup(discord_bot_instance, engine)
    appeal_cmds.setup(discord_bot_instance, engine)
    scheduler_cog.setup(discord_bot_instance, engine)

    logger.info("All cogs loaded successfully.")


def create_bot() -> tuple[discord.Bot, ModerationEngine]:
    """Instantiate the bot, wire the moderation engine around it and load the cogs."""
    bot = discord.Bot(intents=build_intents())
    policies = CommunityPolicyStore(
        db_connection,
        defaults=app_config.policy_defaults,
        ladder=app_config.escalation_ladder,
    )
    engine = ModerationEngine.build(
        db_connection,
        policies,
        DiscordPunishmentActuator(bot, policies),
        sink=DiscordNotificationSink(bot),
    )
    load_cogs(bot, engine)
    return bot, engine


async def start_bot(bot: discord.Bot, token: str) -> None:
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot | None, engine: ModerationEngine | None) -> None:
    """Stop timers, close the Discord connection and flush the database."""
    if engine is not None:
        try:
            await engine.scheduler.shutdown()
        except Exception as exc:
            logger.exception("Error during mute scheduler shutdown: %s", exc)

    if bot is not None and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    await db_connection.close()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database, engine and bot, returning an exit code."""
    token = load_environment()

    try:
        logger.info("Opening database at %s", app_config.database_path)
        await db_connection.open(app_config.database_path)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    try:
        bot, engine = create_bot()
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await db_connection.close()
        return 1

    exit_code = 0
    try:
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, engine)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Modwarden…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    print(f"Exited with code: {main()}")
