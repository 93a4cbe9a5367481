"""
AppealWorkflow: PENDING -> APPROVED | DENIED, exactly once.

``submit`` checks the community's policy and the target infraction before
writing the appeal and marking the infraction appealed in one commit.
While that write is in flight the subject is held in an in-memory set, so a
second submission racing the first is rejected without waiting for the
database; the mark is dropped again whether the write succeeded or not.

``resolve`` is serialised per appeal. On approval the compensating action
for the original punishment runs first; only when it succeeded is the
status written, together with the infraction's deactivation, in a single
commit guarded by ``status = 'PENDING'``. A failed compensation leaves the
appeal pending so it can be reviewed again.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import List, Optional, Set, Tuple

from modwarden.configuration.community_policy import PolicyProvider
from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import (
    APPEALABLE_KINDS,
    Appeal,
    AppealStatus,
    Infraction,
    InfractionFilter,
    InfractionKind,
)
from modwarden.errors import (
    AlreadyResolved,
    AppealAlreadyPending,
    AppealOnCooldown,
    AppealsDisabled,
    InfractionNotAppealable,
    InfractionNotFound,
    ValidationError,
)
from modwarden.moderation.actuator import PunishmentActuator
from modwarden.moderation.clock import Clock
from modwarden.moderation.infraction_store import InfractionStore
from modwarden.moderation.mute_scheduler import MuteScheduler
from modwarden.moderation.notifications import EventKind, ModerationEvent, NotificationSink, deliver
from modwarden.util.case_ids import generate_case_id
from modwarden.util.logger import get_logger

logger = get_logger("appeal_workflow")

NO_REVIEW_REASON = "No reason provided"


def approval_reason(review_reason: str) -> str:
    return f"Appeal approved: {review_reason}"


class AppealWorkflow:
    """Submission and review of appeals.

    Args:
        store: Infraction and appeal persistence.
        policies: Source of ``allow_appeals`` and the appeal cooldown.
        scheduler: Used to lift mutes when a mute appeal is approved.
        actuator: Used to unban when a ban appeal is approved.
        clock: Time source for submission and review timestamps.
        sink: Optional notification sink.
    """

    def __init__(
        self,
        store: InfractionStore,
        policies: PolicyProvider,
        scheduler: MuteScheduler,
        actuator: PunishmentActuator,
        clock: Clock,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self.store = store
        self.policies = policies
        self.scheduler = scheduler
        self.actuator = actuator
        self.clock = clock
        self.sink = sink
        self._submitting: Set[Tuple[GuildID, UserID]] = set()
        self._resolve_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, appeal_id: str) -> asyncio.Lock:
        lock = self._resolve_locks.get(appeal_id)
        if lock is None:
            lock = self._resolve_locks[appeal_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, community_id: GuildID, subject_id: UserID, case_id: str, reason: str) -> Appeal:
        """Open an appeal against one of the subject's active infractions.

        Raises:
            ValidationError: If ``reason`` is blank.
            AppealsDisabled: If the community does not take appeals.
            InfractionNotFound: If the case is missing, inactive or not the subject's.
            InfractionNotAppealable: If the case's kind or flags exclude appeals.
            AppealAlreadyPending: If the subject already has a pending appeal.
            AppealOnCooldown: If the same case was denied too recently.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("An appeal needs a reason.")

        key = (community_id, subject_id)
        if key in self._submitting:
            raise AppealAlreadyPending(subject_id)
        self._submitting.add(key)
        try:
            policy = await self.policies.get(community_id)
            if not policy.allow_appeals:
                raise AppealsDisabled(community_id)

            infraction = await self.store.get_by_id(community_id, case_id)
            if not infraction.active or infraction.subject_id != subject_id:
                raise InfractionNotFound(case_id)
            if infraction.kind not in APPEALABLE_KINDS or not infraction.appealable:
                raise InfractionNotAppealable(case_id)

            pending = await self.store.find_pending_appeal(community_id, subject_id)
            if pending is not None:
                raise AppealAlreadyPending(subject_id, pending.id)

            now = self.clock.now()
            await self._check_cooldown(infraction, policy.appeal_cooldown, now)

            appeal = Appeal(
                id=generate_case_id(community_id, now),
                community_id=community_id,
                subject_id=subject_id,
                case_id=case_id,
                infraction_kind=infraction.kind,
                reason=reason,
                submitted_at=now,
            )
            await self.store.create_appeal(appeal)
        finally:
            self._submitting.discard(key)

        logger.info("[APPEAL] User %s appealed %s in %s as %s", subject_id, case_id, community_id, appeal.id)
        await deliver(self.sink, ModerationEvent(EventKind.APPEAL_SUBMITTED, policy, appeal=appeal))
        return appeal

    async def _check_cooldown(self, infraction: Infraction, cooldown, now) -> None:
        if not cooldown:
            return
        for previous in await self.store.list_appeals(infraction.community_id, infraction.subject_id):
            if previous.case_id != infraction.id or previous.status is not AppealStatus.DENIED:
                continue
            retry_at = previous.reviewed_at + cooldown
            if retry_at > now:
                raise AppealOnCooldown(infraction.id, retry_at)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def resolve(
        self, appeal_id: str, reviewer_id: str, decision: AppealStatus, review_reason: Optional[str] = None
    ) -> Appeal:
        """Approve or deny a pending appeal.

        Raises:
            ValidationError: If ``decision`` is not APPROVED or DENIED.
            AppealNotFound: If there is no such appeal.
            AlreadyResolved: If the appeal was already decided.
            ExternalActionFailure: If the compensating action failed; the
                appeal stays pending.
        """
        if not isinstance(decision, AppealStatus) or not decision.is_terminal:
            raise ValidationError("An appeal can only be resolved as APPROVED or DENIED.")
        review_reason = (review_reason or "").strip() or NO_REVIEW_REASON

        async with self._lock_for(appeal_id):
            appeal = await self.store.get_appeal(appeal_id)
            if appeal.status.is_terminal:
                raise AlreadyResolved(appeal.id, appeal.status)

            close_ids: List[str] = []
            audit = None
            if decision is AppealStatus.APPROVED:
                close_ids, audit = await self._compensate(appeal, str(reviewer_id), review_reason)

            resolved = appeal.resolved(decision, str(reviewer_id), review_reason, self.clock.now())
            await self.store.resolve_appeal(resolved, close_ids=close_ids, audit=audit)

        logger.info("[APPEAL] Appeal %s %s by %s", appeal_id, decision.value.lower(), reviewer_id)
        policy = await self.policies.get(resolved.community_id)
        await deliver(self.sink, ModerationEvent(EventKind.APPEAL_RESOLVED, policy, appeal=resolved))
        return resolved

    async def _compensate(
        self, appeal: Appeal, reviewer_id: str, review_reason: str
    ) -> Tuple[List[str], Optional[Infraction]]:
        """Undo the appealed punishment.

        Returns:
            ``(close_ids, audit)``: the cases to deactivate with the verdict,
            and the audit record to write if any of them changed.
        """
        infraction = await self.store.get_by_id(appeal.community_id, appeal.case_id)
        if not infraction.active:
            logger.debug("[APPEAL] %s is already inactive, nothing to reverse", infraction.id)
            return [], None

        reason = approval_reason(review_reason)
        if infraction.kind is InfractionKind.WARNING:
            return [infraction.id], None

        if infraction.kind is InfractionKind.MUTE:
            # the scheduler closes the case itself; other mutes stay in force
            await self.scheduler.lift(appeal.community_id, appeal.subject_id, infraction.id, reviewer_id, reason)
            return [], None

        if infraction.kind is InfractionKind.BAN:
            await self.actuator.unban_user(appeal.community_id, appeal.subject_id, reason)
            # the user is no longer banned, so no ban record stays active
            bans = await self.store.list_by_user(
                appeal.community_id, appeal.subject_id, InfractionFilter.of_kind(InfractionKind.BAN, active_only=True)
            )
            now = self.clock.now()
            audit = Infraction(
                id=generate_case_id(appeal.community_id, now),
                community_id=appeal.community_id,
                subject_id=appeal.subject_id,
                issuer_id=reviewer_id,
                kind=InfractionKind.UNBAN,
                reason=reason,
                created_at=now,
            )
            return [infraction.id] + [ban.id for ban in bans if ban.id != infraction.id], audit

        raise InfractionNotAppealable(infraction.id)
