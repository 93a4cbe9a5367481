"""
PunishmentActuator: the platform side of a punishment.

The engine only talks to the ``PunishmentActuator`` protocol. The py-cord
implementation below resolves guilds, members and the configured mute role,
and translates Discord HTTP errors into the engine's error taxonomy so
callers can fail closed without knowing about ``discord`` exceptions.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

import discord

from modwarden.configuration.community_policy import PolicyProvider
from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.errors import ExternalActionFailure, PermissionDenied, TargetNotFound
from modwarden.util.logger import get_logger

logger = get_logger("actuator")

# Discord caps ban message deletion at seven days
MAX_DELETE_MESSAGE_SECONDS = 7 * 24 * 60 * 60


class PunishmentActuator(Protocol):
    """Applies and revokes punishments on the platform.

    Every method may raise ``PermissionDenied``, ``TargetNotFound`` or another
    ``ExternalActionFailure``; returning normally means the platform confirmed.
    """

    async def grant_mute_role(self, community_id: GuildID, subject_id: UserID, reason: str) -> None: ...

    async def revoke_mute_role(self, community_id: GuildID, subject_id: UserID, reason: str) -> None: ...

    async def ban_user(
        self, community_id: GuildID, subject_id: UserID, reason: str, *, delete_message_seconds: int = 0
    ) -> None: ...

    async def unban_user(self, community_id: GuildID, subject_id: UserID, reason: str) -> None: ...

    async def kick_user(self, community_id: GuildID, subject_id: UserID, reason: str) -> None: ...


@asynccontextmanager
async def translate_discord_errors(action: str, community_id: GuildID, subject_id: UserID) -> AsyncIterator[None]:
    """Map ``discord`` HTTP errors raised inside the block onto engine errors."""
    try:
        yield
    except discord.Forbidden as exc:
        logger.warning("[ACTUATOR] %s for %s in %s: missing permissions", action, subject_id, community_id)
        raise PermissionDenied(action, str(exc)) from exc
    except discord.NotFound as exc:
        logger.info("[ACTUATOR] %s for %s in %s: target not found", action, subject_id, community_id)
        raise TargetNotFound(action, str(exc)) from exc
    except discord.HTTPException as exc:
        logger.error("[ACTUATOR] %s for %s in %s failed: %s", action, subject_id, community_id, exc)
        raise ExternalActionFailure(action, str(exc)) from exc


class DiscordPunishmentActuator:
    """``PunishmentActuator`` implemented with py-cord.

    Args:
        bot: The connected bot used to look up guilds and members.
        policies: Source of the per-community mute role id.
    """

    def __init__(self, bot: discord.Bot, policies: PolicyProvider) -> None:
        self.bot = bot
        self.policies = policies

    async def _guild(self, community_id: GuildID) -> discord.Guild:
        guild = self.bot.get_guild(community_id.to_int())
        if guild is not None:
            return guild
        return await self.bot.fetch_guild(community_id.to_int())

    async def _member(self, guild: discord.Guild, subject_id: UserID) -> discord.Member:
        member = guild.get_member(subject_id.to_int())
        if member is not None:
            return member
        return await guild.fetch_member(subject_id.to_int())

    async def _mute_role(self, guild: discord.Guild, community_id: GuildID) -> discord.Role:
        policy = await self.policies.get(community_id)
        if policy.muted_role_id is None:
            raise TargetNotFound("mute role lookup", "no muted role is configured for this community")
        role = guild.get_role(policy.muted_role_id)
        if role is None:
            raise TargetNotFound("mute role lookup", f"role {policy.muted_role_id} does not exist")
        return role

    async def grant_mute_role(self, community_id: GuildID, subject_id: UserID, reason: str) -> None:
        async with translate_discord_errors("grant mute role", community_id, subject_id):
            guild = await self._guild(community_id)
            role = await self._mute_role(guild, community_id)
            member = await self._member(guild, subject_id)
            await member.add_roles(role, reason=reason)
        logger.debug("[ACTUATOR] Granted mute role to %s in %s", subject_id, community_id)

    async def revoke_mute_role(self, community_id: GuildID, subject_id: UserID, reason: str) -> None:
        async with translate_discord_errors("revoke mute role", community_id, subject_id):
            guild = await self._guild(community_id)
            role = await self._mute_role(guild, community_id)
            member = await self._member(guild, subject_id)
            await member.remove_roles(role, reason=reason)
        logger.debug("[ACTUATOR] Revoked mute role from %s in %s", subject_id, community_id)

    async def ban_user(
        self, community_id: GuildID, subject_id: UserID, reason: str, *, delete_message_seconds: int = 0
    ) -> None:
        seconds = max(0, min(delete_message_seconds, MAX_DELETE_MESSAGE_SECONDS))
        async with translate_discord_errors("ban", community_id, subject_id):
            guild = await self._guild(community_id)
            await guild.ban(discord.Object(id=subject_id.to_int()), reason=reason, delete_message_seconds=seconds)
        logger.debug("[ACTUATOR] Banned %s from %s", subject_id, community_id)

    async def unban_user(self, community_id: GuildID, subject_id: UserID, reason: str) -> None:
        async with translate_discord_errors("unban", community_id, subject_id):
            guild = await self._guild(community_id)
            await guild.unban(discord.Object(id=subject_id.to_int()), reason=reason)
        logger.debug("[ACTUATOR] Unbanned %s from %s", subject_id, community_id)

    async def kick_user(self, community_id: GuildID, subject_id: UserID, reason: str) -> None:
        async with translate_discord_errors("kick", community_id, subject_id):
            guild = await self._guild(community_id)
            await guild.kick(discord.Object(id=subject_id.to_int()), reason=reason)
        logger.debug("[ACTUATOR] Kicked %s from %s", subject_id, community_id)
