"""
Direct moderator actions.

Every punishment follows the same order: ask the actuator first, and only
once the platform confirmed write the infraction, arm its timer and send
notifications. If the actuator raises, nothing is recorded and the error
reaches the caller unchanged.

The escalation engine dispatches its tiers through the same methods, so an
automatic mute is indistinguishable from a manual one apart from its issuer.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from modwarden.configuration.community_policy import PolicyProvider
from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import (
    Infraction,
    InfractionFilter,
    InfractionKind,
)
from modwarden.datatypes.policy_datatypes import PunishmentTier
from modwarden.errors import ValidationError
from modwarden.moderation.actuator import PunishmentActuator
from modwarden.moderation.clock import Clock
from modwarden.moderation.infraction_store import InfractionStore
from modwarden.moderation.mute_scheduler import MuteScheduler
from modwarden.moderation.notifications import EventKind, ModerationEvent, NotificationSink, deliver
from modwarden.util.case_ids import generate_case_id
from modwarden.util.logger import get_logger

logger = get_logger("moderation_service")


def _require_reason(reason: str) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required.")
    return reason


class ModerationService:
    """Fail-closed moderation actions backed by an actuator and the store."""

    def __init__(
        self,
        store: InfractionStore,
        actuator: PunishmentActuator,
        policies: PolicyProvider,
        scheduler: MuteScheduler,
        clock: Clock,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self.store = store
        self.actuator = actuator
        self.policies = policies
        self.scheduler = scheduler
        self.clock = clock
        self.sink = sink

    def _new_infraction(
        self,
        community_id: GuildID,
        subject_id: UserID,
        issuer_id: str,
        kind: InfractionKind,
        reason: str,
        *,
        duration: Optional[timedelta] = None,
        appealable: bool = True,
    ) -> Infraction:
        now = self.clock.now()
        return Infraction(
            id=generate_case_id(community_id, now),
            community_id=community_id,
            subject_id=subject_id,
            issuer_id=str(issuer_id),
            kind=kind,
            reason=reason,
            created_at=now,
            expires_at=now + duration if duration is not None else None,
            appealable=appealable,
        )

    async def _record(self, infraction: Infraction) -> Infraction:
        try:
            await self.store.create(infraction)
        except Exception:
            logger.exception(
                "[MODERATION] %s of user %s in %s was applied but could not be recorded",
                infraction.kind, infraction.subject_id, infraction.community_id,
            )
            raise
        logger.info(
            "[MODERATION] %s %s: user %s in %s by %s (%s)",
            infraction.kind, infraction.id, infraction.subject_id, infraction.community_id,
            infraction.issuer_id, infraction.reason,
        )
        return infraction

    async def _notify(self, kind: EventKind, infraction: Infraction, count: int = 0) -> None:
        policy = await self.policies.get(infraction.community_id)
        await deliver(self.sink, ModerationEvent(kind, policy, infraction=infraction, count=count))

    # ------------------------------------------------------------------
    # Punishments
    # ------------------------------------------------------------------

    async def warn(self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str) -> Infraction:
        """Record a warning. Escalation is the caller's job (see ``EscalationEngine``)."""
        warning = self._new_infraction(community_id, subject_id, issuer_id, InfractionKind.WARNING, _require_reason(reason))
        await self._record(warning)
        await self._notify(EventKind.INFRACTION_RECORDED, warning)
        return warning

    async def mute(
        self,
        community_id: GuildID,
        subject_id: UserID,
        issuer_id: str,
        reason: str,
        duration: Optional[timedelta] = None,
        *,
        appealable: bool = True,
    ) -> Infraction:
        """Grant the mute role, record the mute and arm its expiry when temporary."""
        reason = _require_reason(reason)
        if duration is not None and duration <= timedelta(0):
            raise ValidationError("Mute duration must be positive.")

        await self.actuator.grant_mute_role(community_id, subject_id, reason)
        mute = self._new_infraction(
            community_id, subject_id, issuer_id, InfractionKind.MUTE, reason,
            duration=duration, appealable=appealable,
        )
        await self._record(mute)
        self.scheduler.arm(mute)
        await self._notify(EventKind.INFRACTION_RECORDED, mute)
        return mute

    async def unmute(
        self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str
    ) -> Optional[Infraction]:
        """Lift every active mute now. Returns ``None`` when the user was not muted."""
        return await self.scheduler.release(community_id, subject_id, str(issuer_id), _require_reason(reason))

    async def ban(
        self,
        community_id: GuildID,
        subject_id: UserID,
        issuer_id: str,
        reason: str,
        *,
        allow_appeal: bool = True,
        delete_message_seconds: int = 0,
    ) -> Infraction:
        reason = _require_reason(reason)
        await self.actuator.ban_user(community_id, subject_id, reason, delete_message_seconds=delete_message_seconds)
        ban = self._new_infraction(
            community_id, subject_id, issuer_id, InfractionKind.BAN, reason, appealable=allow_appeal
        )
        await self._record(ban)
        await self._notify(EventKind.INFRACTION_RECORDED, ban)
        return ban

    async def unban(self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str) -> Infraction:
        """Unban the user, deactivate their active bans and record an UNBAN."""
        reason = _require_reason(reason)
        await self.actuator.unban_user(community_id, subject_id, reason)

        audit = self._new_infraction(community_id, subject_id, issuer_id, InfractionKind.UNBAN, reason)
        bans = await self.store.list_by_user(
            community_id, subject_id, InfractionFilter.of_kind(InfractionKind.BAN, active_only=True)
        )
        closed = await self.store.close_infractions(community_id, [ban.id for ban in bans], audit)
        if not closed:
            # banned outside the bot, or the bans were already lifted
            await self.store.create(audit)
        logger.info("[MODERATION] UNBAN %s: user %s in %s by %s", audit.id, subject_id, community_id, issuer_id)
        await self._notify(EventKind.INFRACTION_LIFTED, audit)
        return audit

    async def kick(self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str) -> Infraction:
        reason = _require_reason(reason)
        await self.actuator.kick_user(community_id, subject_id, reason)
        kick = self._new_infraction(community_id, subject_id, issuer_id, InfractionKind.KICK, reason)
        await self._record(kick)
        await self._notify(EventKind.INFRACTION_RECORDED, kick)
        return kick

    async def note(self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str) -> Infraction:
        """Record a moderator note. Nothing happens on the platform."""
        note = self._new_infraction(community_id, subject_id, issuer_id, InfractionKind.NOTE, _require_reason(reason))
        await self._record(note)
        await self._notify(EventKind.INFRACTION_RECORDED, note)
        return note

    async def apply_tier(
        self,
        community_id: GuildID,
        subject_id: UserID,
        issuer_id: str,
        reason: str,
        tier: PunishmentTier,
    ) -> Infraction:
        """Dispatch one escalation ladder tier."""
        if tier.kind is InfractionKind.MUTE:
            return await self.mute(
                community_id, subject_id, issuer_id, reason, tier.duration, appealable=tier.appealable
            )
        if tier.kind is InfractionKind.BAN:
            return await self.ban(community_id, subject_id, issuer_id, reason, allow_appeal=tier.appealable)
        if tier.kind is InfractionKind.KICK:
            return await self.kick(community_id, subject_id, issuer_id, reason)
        raise ValidationError(f"{tier.kind} cannot be used as an escalation tier.")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def clear_warnings(self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str) -> int:
        """Deactivate every active warning, leaving a note per cleared warning.

        Returns:
            How many warnings were cleared.
        """
        reason = _require_reason(reason)
        warnings = await self.store.list_by_user(
            community_id, subject_id, InfractionFilter.of_kind(InfractionKind.WARNING, active_only=True)
        )
        if not warnings:
            return 0

        def note_for(case_id: str) -> Infraction:
            return self._new_infraction(
                community_id, subject_id, issuer_id, InfractionKind.NOTE, f"Cleared warning {case_id}: {reason}"
            )

        cleared = await self.store.close_infractions(community_id, [w.id for w in warnings], note_for=note_for)
        if cleared:
            logger.info(
                "[MODERATION] Cleared %d warning(s) of user %s in %s by %s",
                len(cleared), subject_id, community_id, issuer_id,
            )
            summary = self._new_infraction(community_id, subject_id, issuer_id, InfractionKind.NOTE, reason)
            await self._notify(EventKind.WARNINGS_CLEARED, summary, count=len(cleared))
        return len(cleared)

    async def history(
        self,
        community_id: GuildID,
        subject_id: UserID,
        selection: InfractionFilter = InfractionFilter.ALL,  # type: ignore[attr-defined]
    ) -> List[Infraction]:
        return await self.store.list_by_user(community_id, subject_id, selection)
