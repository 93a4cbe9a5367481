"""
EscalationEngine: warnings that turn into punishments.

After every warning the engine counts the subject's active warnings W and,
once W passes the community's threshold, applies ladder tier
``W - threshold`` (clamped to the last tier). The tier is always recomputed
from the live count, so clearing warnings lowers the next punishment
without any bookkeeping.

Warnings for the same subject are serialised by a per-subject lock; the
count and the dispatch happen under it, so two concurrent warnings cannot
both see the same W.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from typing import Optional, Tuple

from modwarden.configuration.community_policy import PolicyProvider
from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import SYSTEM_ISSUER, Infraction, InfractionKind
from modwarden.datatypes.policy_datatypes import PunishmentTier, tier_index_for
from modwarden.errors import ExternalActionFailure
from modwarden.moderation.infraction_store import InfractionStore
from modwarden.moderation.moderation_service import ModerationService
from modwarden.util.logger import get_logger

logger = get_logger("escalation_engine")


def escalation_reason(active_warnings: int) -> str:
    return f"automatic escalation after {active_warnings} warnings"


@dataclass(frozen=True)
class WarningOutcome:
    """Result of ``issue_warning`` / ``escalate``.

    Attributes:
        warning: The warning just recorded (``None`` when only escalating).
        active_warnings: Active warning count W after the warning.
        tier_index: 1-based ladder position, ``None`` below the threshold.
        tier: The ladder entry selected for ``tier_index``.
        punishment: The punishment recorded, ``None`` if none was applied.
        escalation_error: Actuator failure that stopped the punishment.
    """

    warning: Optional[Infraction]
    active_warnings: int
    tier_index: Optional[int] = None
    tier: Optional[PunishmentTier] = None
    punishment: Optional[Infraction] = None
    escalation_error: Optional[ExternalActionFailure] = None

    @property
    def escalated(self) -> bool:
        return self.punishment is not None


class EscalationEngine:
    def __init__(self, store: InfractionStore, policies: PolicyProvider, moderation: ModerationService) -> None:
        self.store = store
        self.policies = policies
        self.moderation = moderation
        self._subject_locks: "weakref.WeakValueDictionary[Tuple[GuildID, UserID], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, community_id: GuildID, subject_id: UserID) -> asyncio.Lock:
        key = (community_id, subject_id)
        lock = self._subject_locks.get(key)
        if lock is None:
            lock = self._subject_locks[key] = asyncio.Lock()
        return lock

    async def issue_warning(
        self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str
    ) -> WarningOutcome:
        """Record a warning and escalate if the subject crossed the threshold."""
        async with self._lock_for(community_id, subject_id):
            warning = await self.moderation.warn(community_id, subject_id, issuer_id, reason)
            return await self._escalate_locked(community_id, subject_id, warning)

    async def escalate(self, community_id: GuildID, subject_id: UserID) -> WarningOutcome:
        """Apply the tier matching the current active warning count, if any."""
        async with self._lock_for(community_id, subject_id):
            return await self._escalate_locked(community_id, subject_id, None)

    async def _escalate_locked(
        self, community_id: GuildID, subject_id: UserID, warning: Optional[Infraction]
    ) -> WarningOutcome:
        policy = await self.policies.get(community_id)
        active_warnings = await self.store.count_active(community_id, subject_id, InfractionKind.WARNING)

        tier_index = tier_index_for(active_warnings, policy.warn_threshold)
        if tier_index is None:
            logger.debug(
                "[ESCALATION] User %s in %s has %d/%d active warnings",
                subject_id, community_id, active_warnings, policy.warn_threshold,
            )
            return WarningOutcome(warning, active_warnings)

        tier = policy.ladder.select(tier_index)
        reason = escalation_reason(active_warnings)
        try:
            punishment = await self.moderation.apply_tier(community_id, subject_id, SYSTEM_ISSUER, reason, tier)
        except ExternalActionFailure as exc:
            logger.warning(
                "[ESCALATION] Tier %d (%s) for user %s in %s failed, nothing recorded: %s",
                tier_index, tier.describe(), subject_id, community_id, exc,
            )
            return WarningOutcome(warning, active_warnings, tier_index, tier, escalation_error=exc)

        logger.info(
            "[ESCALATION] User %s in %s reached %d warnings, applied tier %d (%s) as %s",
            subject_id, community_id, active_warnings, tier_index, tier.describe(), punishment.id,
        )
        return WarningOutcome(warning, active_warnings, tier_index, tier, punishment)
