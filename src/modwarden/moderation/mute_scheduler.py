"""
MuteScheduler: expiry timers for temporary mutes.

The scheduler owns at most one live timer per (community, subject). Timers
are derived from ``Infraction.expires_at`` and never persisted; after a
restart ``recover()`` rebuilds them from the active timed mutes in the
store, unmuting anything that expired while the bot was down.

Every way a mute ends funnels through a per-key lock:

* ``expire`` runs when a timer fires (or during recovery). It revokes the
  mute role only once no other mute of the subject is still running, and on
  an actuator failure it logs and leaves the infraction active.
* ``release`` is a manual unmute. It lifts every active mute of the
  subject and lets actuator failures propagate to the caller.
* ``lift`` ends one named mute, for an approved appeal. Like ``expire`` it
  keeps the role while another mute is running; like ``release`` it lets
  actuator failures propagate.

Inside the lock the active mutes are re-read and deactivated through the
store's conditional update, so a timer racing a manual unmute produces at
most one actuator call and one notification.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field
from typing import Coroutine, Dict, Iterable, List, Optional, Tuple

from modwarden.configuration.community_policy import PolicyProvider
from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import (
    SYSTEM_ISSUER,
    Infraction,
    InfractionFilter,
    InfractionKind,
)
from modwarden.errors import ExternalActionFailure, ValidationError
from modwarden.moderation.actuator import PunishmentActuator
from modwarden.moderation.clock import Clock, TimerHandle
from modwarden.moderation.infraction_store import InfractionStore
from modwarden.moderation.notifications import EventKind, ModerationEvent, NotificationSink, deliver
from modwarden.util.case_ids import generate_case_id
from modwarden.util.logger import get_logger

logger = get_logger("mute_scheduler")

MUTE_EXPIRED_REASON = "Mute expired"

MuteKey = Tuple[GuildID, UserID]

_ACTIVE_MUTES = InfractionFilter.of_kind(InfractionKind.MUTE, active_only=True)


@dataclass
class RecoveryReport:
    """Outcome of a startup recovery pass, as case ids.

    Attributes:
        expired: Mutes that were past due and are now lifted.
        armed: Mutes whose expiry timer was armed.
        failed: Past-due mutes that could not be lifted and stay active.
    """

    expired: List[str] = field(default_factory=list)
    armed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class MuteScheduler:
    """Arms, cancels and runs mute expiry timers.

    Args:
        store: Infraction persistence.
        actuator: Applies the unmute on the platform.
        policies: Policy lookup for notifications.
        clock: Time source and timer factory.
        sink: Optional notification sink.
    """

    def __init__(
        self,
        store: InfractionStore,
        actuator: PunishmentActuator,
        policies: PolicyProvider,
        clock: Clock,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self._store = store
        self._actuator = actuator
        self._policies = policies
        self._clock = clock
        self._sink = sink
        self._timers: Dict[MuteKey, Tuple[TimerHandle, str]] = {}
        self._locks: "weakref.WeakValueDictionary[MuteKey, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._tasks: set[asyncio.Task] = set()

    def _lock_for(self, key: MuteKey) -> asyncio.Lock:
        # entries disappear once no routine holds or waits on the lock
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    @property
    def pending(self) -> Dict[MuteKey, str]:
        """Armed timers as ``{(community, subject): case_id}``."""
        return {key: case_id for key, (_, case_id) in self._timers.items()}

    def armed_case(self, community_id: GuildID, subject_id: UserID) -> Optional[str]:
        entry = self._timers.get((community_id, subject_id))
        return entry[1] if entry is not None else None

    def arm(self, infraction: Infraction) -> None:
        """Arm the expiry timer for a mute, replacing any timer for the same subject.

        A permanent mute only cancels the previous timer.

        Raises:
            ValidationError: If ``infraction`` is not an active mute.
        """
        if infraction.kind is not InfractionKind.MUTE or not infraction.active:
            raise ValidationError(f"Only active mutes can be scheduled, got {infraction.kind} {infraction.id}.")

        key = (infraction.community_id, infraction.subject_id)
        self.cancel(*key)
        if not infraction.is_temporary:
            return

        case_id = infraction.id
        handle = self._clock.call_at(infraction.expires_at, lambda: self._on_timer(key, case_id))
        self._timers[key] = (handle, case_id)
        logger.debug(
            "[MUTE SCHEDULER] Armed %s for user %s in %s at %s",
            case_id, infraction.subject_id, infraction.community_id, infraction.expires_at.isoformat(),
        )

    def cancel(self, community_id: GuildID, subject_id: UserID) -> bool:
        """Cancel the timer for a subject. Returns False when none was armed."""
        entry = self._timers.pop((community_id, subject_id), None)
        if entry is None:
            return False
        entry[0].cancel()
        logger.debug("[MUTE SCHEDULER] Cancelled timer %s for user %s in %s", entry[1], subject_id, community_id)
        return True

    def _on_timer(self, key: MuteKey, case_id: str) -> None:
        entry = self._timers.get(key)
        if entry is None or entry[1] != case_id:
            # superseded by a newer timer
            return
        del self._timers[key]
        self._spawn(self.expire(key[0], key[1], [case_id]))

    def _rearm_remaining(self, remaining: Iterable[Infraction]) -> None:
        remaining = list(remaining)
        if not remaining or not all(mute.is_temporary for mute in remaining):
            return
        self.arm(max(remaining, key=lambda mute: mute.expires_at))

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro, name="modwarden-mute-expiry")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[MUTE SCHEDULER] Mute expiry crashed: %s", exc, exc_info=exc)

    # ------------------------------------------------------------------
    # Unmute routines
    # ------------------------------------------------------------------

    def _audit(self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str) -> Infraction:
        now = self._clock.now()
        return Infraction(
            id=generate_case_id(community_id, now),
            community_id=community_id,
            subject_id=subject_id,
            issuer_id=issuer_id,
            kind=InfractionKind.UNMUTE,
            reason=reason,
            created_at=now,
        )

    async def _notify_lifted(self, audit: Infraction) -> None:
        policy = await self._policies.get(audit.community_id)
        await deliver(self._sink, ModerationEvent(EventKind.INFRACTION_LIFTED, policy, infraction=audit))

    async def expire(
        self, community_id: GuildID, subject_id: UserID, case_ids: Iterable[str] = ()
    ) -> List[str]:
        """Lift mutes that are due, either listed in ``case_ids`` or past ``expires_at``.

        Returns:
            Case ids that this call deactivated. Empty when nothing was due,
            another routine got there first, or the unmute failed.
        """
        key = (community_id, subject_id)
        wanted = set(case_ids)

        async with self._lock_for(key):
            now = self._clock.now()
            active = await self._store.list_by_user(community_id, subject_id, _ACTIVE_MUTES)
            due = [
                mute for mute in active
                if mute.id in wanted or (mute.is_temporary and mute.expires_at <= now)
            ]
            if not due:
                return []

            due_ids = {mute.id for mute in due}
            remaining = [mute for mute in active if mute.id not in due_ids]

            if not remaining:
                try:
                    await self._actuator.revoke_mute_role(community_id, subject_id, MUTE_EXPIRED_REASON)
                except ExternalActionFailure as exc:
                    logger.error(
                        "[MUTE SCHEDULER] Could not unmute user %s in %s, mute stays active: %s",
                        subject_id, community_id, exc,
                    )
                    return []

            audit = self._audit(community_id, subject_id, SYSTEM_ISSUER, MUTE_EXPIRED_REASON)
            closed = await self._store.close_infractions(
                community_id, [mute.id for mute in due], audit if not remaining else None
            )
            if key not in self._timers:
                self._rearm_remaining(remaining)

        if closed and not remaining:
            logger.info("[MUTE SCHEDULER] Mute of user %s in %s expired (%s)", subject_id, community_id, ", ".join(closed))
            await self._notify_lifted(audit)
        return closed

    async def release(
        self, community_id: GuildID, subject_id: UserID, issuer_id: str, reason: str
    ) -> Optional[Infraction]:
        """Unmute a subject now, lifting all of their active mutes.

        Returns:
            The recorded UNMUTE infraction, or ``None`` when the subject had
            no active mute (no actuator call is made).

        Raises:
            ExternalActionFailure: If the mute role could not be revoked. The
                mutes stay active and their timer is re-armed.
        """
        key = (community_id, subject_id)
        self.cancel(community_id, subject_id)

        async with self._lock_for(key):
            active = await self._store.list_by_user(community_id, subject_id, _ACTIVE_MUTES)
            if not active:
                return None

            try:
                await self._actuator.revoke_mute_role(community_id, subject_id, reason)
            except ExternalActionFailure:
                self._rearm_remaining(active)
                raise

            audit = self._audit(community_id, subject_id, issuer_id, reason)
            closed = await self._store.close_infractions(community_id, [mute.id for mute in active], audit)

        if not closed:
            return None
        logger.info("[MUTE SCHEDULER] Released user %s in %s (%s)", subject_id, community_id, ", ".join(closed))
        await self._notify_lifted(audit)
        return audit

    async def lift(
        self, community_id: GuildID, subject_id: UserID, case_id: str, issuer_id: str, reason: str
    ) -> List[str]:
        """End the mute ``case_id`` only, leaving the subject's other mutes in place.

        The mute role is revoked, and an UNMUTE recorded, only when no other
        mute of the subject remains active. Otherwise the timer moves to the
        longest remaining timed mute.

        Returns:
            ``[case_id]`` when this call deactivated it, else an empty list.

        Raises:
            ExternalActionFailure: If the mute role could not be revoked. The
                mute stays active and its timer is untouched.
        """
        key = (community_id, subject_id)

        async with self._lock_for(key):
            active = await self._store.list_by_user(community_id, subject_id, _ACTIVE_MUTES)
            target = [mute for mute in active if mute.id == case_id]
            if not target:
                return []
            remaining = [mute for mute in active if mute.id != case_id]

            if not remaining:
                await self._actuator.revoke_mute_role(community_id, subject_id, reason)

            audit = None if remaining else self._audit(community_id, subject_id, issuer_id, reason)
            closed = await self._store.close_infractions(community_id, [case_id], audit)

            if self.armed_case(community_id, subject_id) == case_id:
                self.cancel(community_id, subject_id)
                self._rearm_remaining(remaining)

        if closed:
            logger.info(
                "[MUTE SCHEDULER] Lifted %s for user %s in %s (%d mute(s) remain)",
                case_id, subject_id, community_id, len(remaining),
            )
        if closed and audit is not None:
            await self._notify_lifted(audit)
        return closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def recover(self) -> RecoveryReport:
        """Rebuild timers from the store after a restart.

        Past-due mutes are lifted before this returns; the rest are armed.
        """
        report = RecoveryReport()
        mutes = await self._store.list_active_timed_mutes()
        now = self._clock.now()

        grouped: Dict[MuteKey, List[Infraction]] = {}
        for mute in mutes:
            grouped.setdefault((mute.community_id, mute.subject_id), []).append(mute)

        for (community_id, subject_id), group in grouped.items():
            due = [mute for mute in group if mute.expires_at <= now]
            future = [mute for mute in group if mute.expires_at > now]

            if due:
                due_ids = [mute.id for mute in due]
                try:
                    closed = await self.expire(community_id, subject_id, due_ids)
                except Exception:
                    logger.exception("[MUTE SCHEDULER] Recovery failed for user %s in %s", subject_id, community_id)
                    closed = []
                report.expired.extend(closed)
                report.failed.extend(case_id for case_id in due_ids if case_id not in closed)

            if future and (community_id, subject_id) not in self._timers:
                self.arm(max(future, key=lambda mute: mute.expires_at))
            armed = self.armed_case(community_id, subject_id)
            if armed is not None:
                report.armed.append(armed)

        logger.info(
            "[MUTE SCHEDULER] Recovery: %d expired, %d armed, %d failed",
            len(report.expired), len(report.armed), len(report.failed),
        )
        return report

    async def drain(self) -> None:
        """Wait for in-flight expiry tasks, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every timer and wait for running expiries to finish."""
        for handle, _ in self._timers.values():
            handle.cancel()
        self._timers.clear()
        await self.drain()
        logger.info("[MUTE SCHEDULER] Shut down")
