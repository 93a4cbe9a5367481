"""
Appeal cog: /appeal submit, approve, deny and pending.

Submitting works from a DM as well, so banned users can still appeal: the
community is taken from the case id prefix when the command has no guild.
Reviewing requires Ban Members or the community's moderator role.
"""

import discord
from discord import Option
from discord.ext import commands

from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import AppealStatus
from modwarden.errors import ModerationError
from modwarden.moderation.engine import ModerationEngine
from modwarden.util.case_ids import community_of
from modwarden.util.discord_utils import describe_error, is_moderator
from modwarden.util.format_utils import humanize_timestamp
from modwarden.util.logger import get_logger

logger = get_logger("appeal_cog")


class AppealCog(commands.Cog):
    """Slash commands for submitting and reviewing appeals."""

    appeal = discord.SlashCommandGroup("appeal", "Appeal an infraction or review appeals.")

    def __init__(self, discord_bot_instance: discord.Bot, engine: ModerationEngine) -> None:
        self.discord_bot_instance = discord_bot_instance
        self.engine = engine
        logger.info("[APPEAL CMDS] Appeal cog loaded")

    async def _report_error(self, ctx: discord.ApplicationContext, exc: Exception) -> None:
        if isinstance(exc, ModerationError):
            await ctx.send_followup(describe_error(exc))
            return
        logger.exception("[APPEAL CMDS] Appeal command failed")
        await ctx.send_followup("An error occurred while processing the appeal.")

    async def _check_reviewer(self, ctx: discord.ApplicationContext) -> bool:
        if not ctx.guild_id:
            await ctx.send_followup("Appeals can only be reviewed in a server.")
            return False
        policy = await self.engine.policies.get(GuildID(ctx.guild_id))
        if not is_moderator(ctx, policy, "ban_members"):
            await ctx.send_followup("You do not have permission to review appeals.")
            return False
        return True

    @appeal.command(name="submit", description="Appeal one of your active infractions.")
    async def submit(
        self,
        ctx: discord.ApplicationContext,
        case_id: Option(str, "The case id from the notification you received.", required=True),  # type: ignore
        reason: Option(str, "Why should this decision be reconsidered?", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)

        try:
            guild_id = GuildID(ctx.guild_id) if ctx.guild_id else community_of(case_id)
        except ValueError:
            await ctx.send_followup(f"`{case_id}` is not a valid case id.")
            return

        try:
            appeal = await self.engine.appeals.submit(guild_id, UserID.from_user(ctx.author), case_id.strip(), reason)
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Your appeal {appeal.id} was submitted and will be reviewed by a moderator.")

    async def _resolve(
        self, ctx: discord.ApplicationContext, appeal_id: str, decision: AppealStatus, reason: str
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_reviewer(ctx):
            return

        try:
            # appeals belong to the community they were filed in
            appeal = await self.engine.store.get_appeal(appeal_id.strip())
            if appeal.community_id != GuildID(ctx.guild_id):
                await ctx.send_followup(f"No appeal {appeal_id} in this server.")
                return
            resolved = await self.engine.appeals.resolve(appeal.id, str(ctx.author.id), decision, reason)
        except Exception as exc:
            await self._report_error(ctx, exc)
            return
        await ctx.send_followup(f"Appeal {resolved.id} {resolved.status.value.lower()}.")

    @appeal.command(name="approve", description="Approve an appeal and reverse its punishment.")
    async def approve(
        self,
        ctx: discord.ApplicationContext,
        appeal_id: Option(str, "The appeal id.", required=True),  # type: ignore
        reason: Option(str, "Reason shown to the user.", default=""),  # type: ignore
    ) -> None:
        await self._resolve(ctx, appeal_id, AppealStatus.APPROVED, reason)

    @appeal.command(name="deny", description="Deny an appeal.")
    async def deny(
        self,
        ctx: discord.ApplicationContext,
        appeal_id: Option(str, "The appeal id.", required=True),  # type: ignore
        reason: Option(str, "Reason shown to the user.", default=""),  # type: ignore
    ) -> None:
        await self._resolve(ctx, appeal_id, AppealStatus.DENIED, reason)

    @appeal.command(name="pending", description="List appeals waiting for review.")
    async def pending(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_reviewer(ctx):
            return

        appeals = await self.engine.store.list_pending_appeals(GuildID(ctx.guild_id))
        if not appeals:
            await ctx.send_followup("There are no pending appeals.")
            return

        embed = discord.Embed(title="Pending appeals", color=discord.Color.blurple())
        for appeal in appeals[:25]:
            embed.add_field(
                name=f"{appeal.id} ({appeal.infraction_kind.label})",
                value=f"<@{appeal.subject_id}> on case {appeal.case_id}, {humanize_timestamp(appeal.submitted_at)}\n{appeal.reason}",
                inline=False,
            )
        await ctx.send_followup(embed=embed)


def setup(discord_bot_instance: discord.Bot, engine: ModerationEngine) -> None:
    discord_bot_instance.add_cog(AppealCog(discord_bot_instance, engine))
