"""
Moderation cog: slash commands for moderators.

Every command defers ephemerally, checks that the invoker holds the Discord
permission for the action (or the community's moderator role), and hands
the work to the engine. Engine errors are reported back to the invoker with
their message; nothing here touches the database or the platform directly.

Commands
- /warn, /mute, /unmute, /ban, /unban, /kick, /note
- /warnings: a user's infraction history
- /clearwarnings: deactivate all active warnings of a user
- /modconfig: view, change or reset the community's moderation policy
"""

from typing import Optional

import discord
from discord import Option
from discord.ext import commands

from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import InfractionFilter
from modwarden.datatypes.policy_datatypes import CommunityPolicy
from modwarden.errors import ModerationError
from modwarden.moderation.engine import ModerationEngine
from modwarden.util.discord_utils import (
    DELETE_MESSAGE_CHOICES,
    describe_error,
    has_permissions,
    is_moderator,
    mention,
)
from modwarden.util.format_utils import format_duration, humanize_timestamp, parse_duration
from modwarden.util.logger import get_logger

logger = get_logger("moderation_cog")

# Infractions listed per /warnings page
HISTORY_LIMIT = 15


def build_history_embed(user: discord.abc.User, infractions) -> discord.Embed:
    active = sum(1 for infraction in infractions if infraction.active)
    embed = discord.Embed(
        title=f"Infractions for {user}",
        description=f"{len(infractions)} total, {active} active.",
        color=discord.Color.blurple(),
    )
    for infraction in infractions[:HISTORY_LIMIT]:
        state = "Active" if infraction.active else "Inactive"
        value = f"{infraction.reason}\nBy {mention(infraction.issuer_id)} on {humanize_timestamp(infraction.created_at)}"
        if infraction.is_temporary:
            value += f"\nExpires {humanize_timestamp(infraction.expires_at)}"
        embed.add_field(name=f"{infraction.kind} ({state}) | {infraction.id}", value=value, inline=False)
    if len(infractions) > HISTORY_LIMIT:
        embed.set_footer(text=f"Showing the newest {HISTORY_LIMIT} of {len(infractions)}")
    return embed


def build_policy_embed(policy: CommunityPolicy) -> discord.Embed:
    def channel(value: Optional[int]) -> str:
        return f"<#{value}>" if value else "not set"

    def role(value: Optional[int]) -> str:
        return f"<@&{value}>" if value else "not set"

    embed = discord.Embed(title="Moderation settings", color=discord.Color.blurple())
    embed.add_field(name="Warning threshold", value=str(policy.warn_threshold), inline=True)
    embed.add_field(name="Appeals", value="allowed" if policy.allow_appeals else "disabled", inline=True)
    embed.add_field(name="Appeal cooldown", value=f"{policy.appeal_cooldown_hours}h", inline=True)
    embed.add_field(name="DM notifications", value="on" if policy.dm_notifications else "off", inline=True)
    embed.add_field(name="Muted role", value=role(policy.muted_role_id), inline=True)
    embed.add_field(name="Moderator role", value=role(policy.moderator_role_id), inline=True)
    embed.add_field(name="Log channel", value=channel(policy.log_channel_id), inline=True)
    embed.add_field(name="Appeal channel", value=channel(policy.appeal_channel_id), inline=True)
    embed.add_field(
        name="Escalation ladder",
        value="\n".join(f"{index}. {tier.describe()}" for index, tier in enumerate(policy.ladder.tiers, start=1)),
        inline=False,
    )
    return embed


class ModerationCog(commands.Cog):
    """Moderator slash commands backed by the moderation engine."""

    def __init__(self, discord_bot_instance: discord.Bot, engine: ModerationEngine) -> None:
        self.discord_bot_instance = discord_bot_instance
        self.engine = engine
        logger.info("[MODERATION CMDS] Moderation cog loaded")

    async def _check_moderator(self, ctx: discord.ApplicationContext, permission_name: str) -> bool:
        """Reply and return False unless the invoker may moderate in this guild."""
        if not ctx.guild_id:
            await ctx.send_followup("This command can only be used in a server.")
            return False
        policy = await self.engine.policies.get(GuildID(ctx.guild_id))
        if not is_moderator(ctx, policy, permission_name):
            await ctx.send_followup("You do not have permission to use this command.")
            return False
        return True

    async def _check_target(self, ctx: discord.ApplicationContext, user: discord.abc.User) -> bool:
        if user.id == ctx.author.id:
            await ctx.send_followup("You cannot perform moderation actions on yourself.")
            return False
        if user.bot:
            await ctx.send_followup("You cannot perform moderation actions on bots.")
            return False
        if isinstance(user, discord.Member):
            if user.guild_permissions.administrator:
                await ctx.send_followup("You cannot perform moderation actions against administrators.")
                return False
            policy = await self.engine.policies.get(GuildID(ctx.guild_id))
            if policy.moderator_role_id and any(role.id == policy.moderator_role_id for role in user.roles):
                await ctx.send_followup("You cannot perform moderation actions against moderators.")
                return False
        return True

    async def _report_error(self, ctx: discord.ApplicationContext, exc: Exception) -> None:
        if isinstance(exc, ModerationError):
            await ctx.send_followup(describe_error(exc))
            return
        logger.exception("[MODERATION CMDS] Command /%s failed", ctx.command.qualified_name if ctx.command else "?")
        await ctx.send_followup("An error occurred while processing the command.")

    # ------------------------------------------------------------------
    # Punishments
    # ------------------------------------------------------------------

    @commands.slash_command(name="warn", description="Warn a user. Repeated warnings escalate automatically.")
    async def warn(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to warn.", required=True),  # type: ignore
        reason: Option(str, "Reason for the warning.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "moderate_members") or not await self._check_target(ctx, user):
            return

        try:
            outcome = await self.engine.escalation.issue_warning(
                GuildID(ctx.guild_id), UserID.from_user(user), str(ctx.author.id), reason
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return

        message = f"Warned {user.mention} ({outcome.warning.id}). They now have {outcome.active_warnings} active warning(s)."
        if outcome.punishment is not None:
            message += f"\nAutomatic {outcome.tier.describe()} applied ({outcome.punishment.id})."
        elif outcome.escalation_error is not None:
            message += f"\nAutomatic {outcome.tier.describe()} failed: {describe_error(outcome.escalation_error)}"
        await ctx.send_followup(message)

    @commands.slash_command(name="mute", description="Give a user the muted role, optionally for a limited time.")
    async def mute(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to mute.", required=True),  # type: ignore
        reason: Option(str, "Reason for the mute.", required=True),  # type: ignore
        duration: Option(str, "Duration such as 30m, 2h or 1d; leave empty for permanent.", default=""),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "moderate_members") or not await self._check_target(ctx, user):
            return

        try:
            length = parse_duration(duration)
        except ValueError:
            await ctx.send_followup(f"Invalid duration `{duration}`. Use something like `30m`, `2h` or `1d`.")
            return

        try:
            mute = await self.engine.moderation.mute(
                GuildID(ctx.guild_id), UserID.from_user(user), str(ctx.author.id), reason, length
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Muted {user.mention} ({format_duration(mute.duration)}, {mute.id}).")

    @commands.slash_command(name="unmute", description="Remove the muted role from a user.")
    async def unmute(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to unmute.", required=True),  # type: ignore
        reason: Option(str, "Reason for the unmute.", default="Manual unmute"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "moderate_members"):
            return

        try:
            audit = await self.engine.moderation.unmute(
                GuildID(ctx.guild_id), UserID.from_user(user), str(ctx.author.id), reason
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return

        if audit is None:
            await ctx.send_followup(f"{user.mention} is not muted.")
            return
        await ctx.send_followup(f"Unmuted {user.mention} ({audit.id}).")

    @commands.slash_command(name="ban", description="Ban a user from the server.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", required=True),  # type: ignore
        allow_appeal: Option(bool, "Whether the user may appeal this ban.", default=True),  # type: ignore
        delete_message_seconds: Option(
            int,
            "Delete the user's recent messages.",
            choices=DELETE_MESSAGE_CHOICES,
            default=0,
        ),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "ban_members") or not await self._check_target(ctx, user):
            return

        try:
            ban = await self.engine.moderation.ban(
                GuildID(ctx.guild_id),
                UserID.from_user(user),
                str(ctx.author.id),
                reason,
                allow_appeal=allow_appeal,
                delete_message_seconds=delete_message_seconds,
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Banned {user.mention} ({ban.id}).")

    @commands.slash_command(name="unban", description="Lift a user's ban.")
    async def unban(
        self,
        ctx: discord.ApplicationContext,
        user_id: Option(str, "ID of the user to unban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the unban.", default="Manual unban"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "ban_members"):
            return

        try:
            subject = UserID(user_id)
        except ValueError:
            await ctx.send_followup(f"`{user_id}` is not a valid user ID.")
            return

        try:
            audit = await self.engine.moderation.unban(GuildID(ctx.guild_id), subject, str(ctx.author.id), reason)
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Unbanned <@{subject}> ({audit.id}).")

    @commands.slash_command(name="kick", description="Kick a user from the server.")
    async def kick(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to kick.", required=True),  # type: ignore
        reason: Option(str, "Reason for the kick.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "kick_members") or not await self._check_target(ctx, user):
            return

        try:
            kick = await self.engine.moderation.kick(
                GuildID(ctx.guild_id), UserID.from_user(user), str(ctx.author.id), reason
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Kicked {user.mention} ({kick.id}).")

    @commands.slash_command(name="note", description="Add a moderator note to a user's record.")
    async def note(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user the note is about.", required=True),  # type: ignore
        text: Option(str, "The note.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "moderate_members"):
            return

        try:
            note = await self.engine.moderation.note(
                GuildID(ctx.guild_id), UserID.from_user(user), str(ctx.author.id), text
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Note added for {user.mention} ({note.id}).")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @commands.slash_command(name="warnings", description="Show a user's infraction history.")
    async def warnings(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to look up.", required=True),  # type: ignore
        active_only: Option(bool, "Only show active infractions.", default=False),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "moderate_members"):
            return

        selection = InfractionFilter.ACTIVE if active_only else InfractionFilter.ALL  # type: ignore[attr-defined]
        infractions = await self.engine.moderation.history(GuildID(ctx.guild_id), UserID.from_user(user), selection)
        if not infractions:
            await ctx.send_followup(f"{user.mention} has no recorded infractions.")
            return
        await ctx.send_followup(embed=build_history_embed(user, infractions))

    @commands.slash_command(name="clearwarnings", description="Clear all active warnings of a user.")
    async def clearwarnings(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user whose warnings to clear.", required=True),  # type: ignore
        reason: Option(str, "Reason for clearing.", default="Warnings cleared"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_moderator(ctx, "moderate_members"):
            return

        try:
            cleared = await self.engine.moderation.clear_warnings(
                GuildID(ctx.guild_id), UserID.from_user(user), str(ctx.author.id), reason
            )
        except Exception as exc:
            await self._report_error(ctx, exc)
            return

        if not cleared:
            await ctx.send_followup(f"{user.mention} has no active warnings to clear.")
            return
        await ctx.send_followup(f"Cleared {cleared} warning(s) for {user.mention}.")

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    @commands.slash_command(name="modconfig", description="View or change this server's moderation settings.")
    async def modconfig(
        self,
        ctx: discord.ApplicationContext,
        warn_threshold: Option(int, "Warnings allowed before escalation starts.", min_value=1, default=None),  # type: ignore
        allow_appeals: Option(bool, "Whether users may appeal infractions.", default=None),  # type: ignore
        appeal_cooldown_hours: Option(int, "Hours before a denied case can be appealed again.", min_value=0, default=None),  # type: ignore
        dm_notifications: Option(bool, "DM users about actions taken against them.", default=None),  # type: ignore
        muted_role: Option(discord.Role, "Role given to muted users.", default=None),  # type: ignore
        moderator_role: Option(discord.Role, "Role allowed to use moderation commands.", default=None),  # type: ignore
        log_channel: Option(discord.TextChannel, "Channel for moderation logs.", default=None),  # type: ignore
        appeal_channel: Option(discord.TextChannel, "Channel where appeals are posted.", default=None),  # type: ignore
        reset: Option(bool, "Forget every stored setting and go back to the defaults.", default=False),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not ctx.guild_id:
            await ctx.send_followup("This command can only be used in a server.")
            return
        if not has_permissions(ctx, manage_guild=True):
            await ctx.send_followup("You need Manage Server permission.")
            return

        changes = {
            "warn_threshold": warn_threshold,
            "allow_appeals": allow_appeals,
            "appeal_cooldown_hours": appeal_cooldown_hours,
            "dm_notifications": dm_notifications,
            "muted_role_id": muted_role.id if muted_role is not None else None,
            "moderator_role_id": moderator_role.id if moderator_role is not None else None,
            "log_channel_id": log_channel.id if log_channel is not None else None,
            "appeal_channel_id": appeal_channel.id if appeal_channel is not None else None,
        }
        changes = {name: value for name, value in changes.items() if value is not None}

        guild_id = GuildID(ctx.guild_id)
        try:
            if reset:
                policy = await self.engine.policies.reset(guild_id)
                logger.info("[MODERATION CMDS] %s reset the policy of %s", ctx.author.id, guild_id)
            elif changes:
                policy = await self.engine.policies.update(guild_id, **changes)
            else:
                policy = await self.engine.policies.get(guild_id)
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(embed=build_policy_embed(policy))

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        self.engine.policies.invalidate(GuildID.from_guild(guild))


def setup(discord_bot_instance: discord.Bot, engine: ModerationEngine) -> None:
    discord_bot_instance.add_cog(ModerationCog(discord_bot_instance, engine))
