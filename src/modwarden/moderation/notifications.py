"""
Outcome notifications for moderation events.

Notifications are best-effort. ``deliver`` is the only way the engine hands
an event to a sink: any failure is logged and swallowed so it can never undo
or abort the state transition that produced the event.

The py-cord sink DMs the affected user (when the community allows it) and
posts an embed to the community's log channel, or its appeal channel for
appeal events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

import discord

from modwarden.datatypes.infraction_datatypes import Appeal, AppealStatus, Infraction, InfractionKind
from modwarden.datatypes.policy_datatypes import CommunityPolicy
from modwarden.util.format_utils import format_duration, humanize_timestamp
from modwarden.util.logger import get_logger

logger = get_logger("notifications")


class EventKind(Enum):
    INFRACTION_RECORDED = "infraction_recorded"
    INFRACTION_LIFTED = "infraction_lifted"
    APPEAL_SUBMITTED = "appeal_submitted"
    APPEAL_RESOLVED = "appeal_resolved"
    WARNINGS_CLEARED = "warnings_cleared"


@dataclass(frozen=True, slots=True)
class ModerationEvent:
    """Something a moderator or the affected user may want to hear about.

    Attributes:
        kind: What happened.
        policy: Policy of the community the event belongs to.
        infraction: The infraction recorded or lifted, if any.
        appeal: The appeal submitted or resolved, if any.
        count: Number of records affected (cleared warnings).
    """

    kind: EventKind
    policy: CommunityPolicy
    infraction: Optional[Infraction] = None
    appeal: Optional[Appeal] = None
    count: int = 0


class NotificationSink(Protocol):
    async def notify(self, event: ModerationEvent) -> None: ...


async def deliver(sink: Optional[NotificationSink], event: ModerationEvent) -> None:
    """Hand ``event`` to ``sink``, logging and swallowing any failure."""
    if sink is None:
        return
    try:
        await sink.notify(event)
    except Exception:
        logger.exception("[NOTIFY] Failed to deliver %s for community %s", event.kind.value, event.policy.community_id)


_KIND_COLORS = {
    InfractionKind.WARNING: discord.Color.gold(),
    InfractionKind.MUTE: discord.Color.orange(),
    InfractionKind.BAN: discord.Color.red(),
    InfractionKind.KICK: discord.Color.dark_orange(),
    InfractionKind.NOTE: discord.Color.light_grey(),
    InfractionKind.UNMUTE: discord.Color.green(),
    InfractionKind.UNBAN: discord.Color.green(),
}


def build_event_embed(event: ModerationEvent) -> discord.Embed:
    """Plain embed describing ``event`` for log and appeal channels."""
    if event.appeal is not None:
        appeal = event.appeal
        color = {
            AppealStatus.PENDING: discord.Color.blurple(),
            AppealStatus.APPROVED: discord.Color.green(),
            AppealStatus.DENIED: discord.Color.red(),
        }[appeal.status]
        embed = discord.Embed(title=f"Appeal {appeal.status.value.title()}", color=color)
        embed.add_field(name="User", value=f"<@{appeal.subject_id}>", inline=True)
        embed.add_field(name="Case", value=appeal.case_id, inline=True)
        embed.add_field(name="Kind", value=appeal.infraction_kind.label, inline=True)
        embed.add_field(name="Reason", value=appeal.reason, inline=False)
        if appeal.status.is_terminal:
            embed.add_field(name="Reviewer", value=f"<@{appeal.reviewer_id}>", inline=True)
            embed.add_field(name="Review", value=appeal.review_reason or "-", inline=False)
        embed.set_footer(text=f"Appeal {appeal.id}")
        return embed

    if event.kind is EventKind.WARNINGS_CLEARED and event.infraction is not None:
        embed = discord.Embed(title="Warnings Cleared", color=discord.Color.green())
        embed.add_field(name="User", value=f"<@{event.infraction.subject_id}>", inline=True)
        embed.add_field(name="Cleared", value=str(event.count), inline=True)
        embed.add_field(name="Reason", value=event.infraction.reason, inline=False)
        return embed

    infraction = event.infraction
    if infraction is None:
        return discord.Embed(title=event.kind.value.replace("_", " ").title())

    title = infraction.kind.value.title()
    if event.kind is EventKind.INFRACTION_LIFTED:
        title = f"{title} Lifted"
    embed = discord.Embed(title=title, color=_KIND_COLORS.get(infraction.kind, discord.Color.default()))
    embed.add_field(name="User", value=f"<@{infraction.subject_id}>", inline=True)
    issuer = "System" if not infraction.issuer_id.isdigit() else f"<@{infraction.issuer_id}>"
    embed.add_field(name="Moderator", value=issuer, inline=True)
    if infraction.kind is InfractionKind.MUTE:
        embed.add_field(name="Duration", value=format_duration(infraction.duration), inline=True)
    embed.add_field(name="Reason", value=infraction.reason, inline=False)
    embed.set_footer(text=f"Case {infraction.id} | {humanize_timestamp(infraction.created_at)}")
    return embed


def build_direct_message(event: ModerationEvent, community_name: str) -> Optional[str]:
    """Text DMed to the affected user, or ``None`` when they are not told."""
    if event.appeal is not None and event.kind is EventKind.APPEAL_RESOLVED:
        appeal = event.appeal
        verdict = "approved" if appeal.status is AppealStatus.APPROVED else "denied"
        text = f"Your appeal for case {appeal.case_id} in **{community_name}** was {verdict}."
        if appeal.review_reason:
            text += f"\nReason: {appeal.review_reason}"
        return text

    infraction = event.infraction
    if infraction is None or event.kind is not EventKind.INFRACTION_RECORDED:
        return None
    if infraction.kind in (InfractionKind.NOTE, InfractionKind.UNBAN):
        return None

    verbs = {
        InfractionKind.WARNING: "warned",
        InfractionKind.MUTE: "muted",
        InfractionKind.UNMUTE: "unmuted",
        InfractionKind.BAN: "banned",
        InfractionKind.KICK: "kicked",
    }
    text = f"You have been {verbs[infraction.kind]} in **{community_name}**.\nReason: {infraction.reason}"
    if infraction.kind is InfractionKind.MUTE:
        text += f"\nDuration: {format_duration(infraction.duration)}"
    if infraction.kind in (InfractionKind.WARNING, InfractionKind.MUTE, InfractionKind.BAN) and infraction.appealable:
        if event.policy.allow_appeals:
            text += f"\nYou may appeal with `/appeal submit case_id:{infraction.id}`."
    return text


class DiscordNotificationSink:
    """``NotificationSink`` that DMs users and posts to configured channels."""

    def __init__(self, bot: discord.Bot) -> None:
        self.bot = bot

    async def notify(self, event: ModerationEvent) -> None:
        policy = event.policy
        guild = self.bot.get_guild(policy.community_id.to_int())
        community_name = guild.name if guild is not None else str(policy.community_id)

        if policy.dm_notifications:
            await self._send_direct_message(event, community_name)

        channel_id = policy.log_channel_id
        if event.kind in (EventKind.APPEAL_SUBMITTED, EventKind.APPEAL_RESOLVED) and policy.appeal_channel_id:
            channel_id = policy.appeal_channel_id
        if channel_id is None:
            return

        channel = self.bot.get_channel(channel_id)
        if channel is None:
            logger.warning("[NOTIFY] Channel %s not found for community %s", channel_id, policy.community_id)
            return
        await channel.send(embed=build_event_embed(event))

    async def _send_direct_message(self, event: ModerationEvent, community_name: str) -> None:
        text = build_direct_message(event, community_name)
        if text is None:
            return

        subject = event.appeal.subject_id if event.appeal is not None else event.infraction.subject_id
        try:
            user = self.bot.get_user(subject.to_int()) or await self.bot.fetch_user(subject.to_int())
            await user.send(text)
        except discord.Forbidden:
            # DMs closed
            logger.debug("[NOTIFY] Could not DM user %s", subject)
        except discord.HTTPException as exc:
            logger.warning("[NOTIFY] Failed to DM user %s: %s", subject, exc)
