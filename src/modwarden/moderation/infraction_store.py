"""
InfractionStore: durable records of infractions and appeals.

Every call is scoped by community. The store orchestrates the repositories
and owns transaction boundaries, so a decision that touches more than one
row (an appeal resolution that also deactivates its infraction and writes an
audit record) lands in a single commit or not at all.

The store never calls the platform and never notifies anyone; callers do
that once a write has returned.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Iterable, List, Optional

from modwarden.database.db_connection import ConnectionManager
from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import (
    Appeal,
    Infraction,
    InfractionFilter,
    InfractionKind,
)
from modwarden.errors import (
    AlreadyResolved,
    AppealNotFound,
    DuplicateId,
    InfractionNotFound,
    ValidationError,
)
from modwarden.repositories import AppealRepository, InfractionRepository
from modwarden.util.logger import get_logger

logger = get_logger("infraction_store")

_UPDATABLE_FIELDS = frozenset({"appealed", "appeal_id"})


class InfractionStore:
    """Community-scoped persistence for infractions and appeals.

    Args:
        connection: Open ``ConnectionManager`` shared with the rest of the bot.
    """

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection
        self._infractions = InfractionRepository()
        self._appeals = AppealRepository()

    # ------------------------------------------------------------------
    # Infractions
    # ------------------------------------------------------------------

    async def create(self, infraction: Infraction) -> Infraction:
        """Persist a new infraction.

        Raises:
            DuplicateId: If a record with the same id already exists.
        """
        try:
            async with self._connection.transaction() as conn:
                await self._infractions.insert(conn, infraction)
        except sqlite3.IntegrityError as exc:
            async with self._connection.read() as conn:
                duplicate = await self._infractions.exists(conn, infraction.id)
            if duplicate:
                raise DuplicateId(infraction.id) from exc
            raise ValidationError(f"Infraction {infraction.id} violates a storage constraint: {exc}") from exc

        logger.debug(
            "[INFRACTION STORE] Created %s %s for user %s in %s",
            infraction.kind, infraction.id, infraction.subject_id, infraction.community_id,
        )
        return infraction

    async def get_by_id(self, community_id: GuildID, case_id: str) -> Infraction:
        """Return the infraction or raise ``InfractionNotFound``."""
        async with self._connection.read() as conn:
            infraction = await self._infractions.get(conn, community_id, case_id)
        if infraction is None:
            raise InfractionNotFound(case_id)
        return infraction

    async def list_by_user(
        self,
        community_id: GuildID,
        subject_id: UserID,
        selection: InfractionFilter = InfractionFilter.ALL,  # type: ignore[attr-defined]
    ) -> List[Infraction]:
        """Newest-first infractions of ``subject_id`` matching ``selection``."""
        async with self._connection.read() as conn:
            return await self._infractions.list_for_user(conn, community_id, subject_id, selection)

    async def deactivate(self, community_id: GuildID, case_id: str) -> bool:
        """Mark an infraction inactive.

        Returns:
            True if this call changed the record, False if it was already
            inactive. Callers use the result to avoid repeating side effects.

        Raises:
            InfractionNotFound: If no such infraction exists in the community.
        """
        async with self._connection.transaction() as conn:
            changed = await self._infractions.deactivate(conn, community_id, case_id)
            if not changed and await self._infractions.get(conn, community_id, case_id) is None:
                raise InfractionNotFound(case_id)
        if changed:
            logger.debug("[INFRACTION STORE] Deactivated %s in %s", case_id, community_id)
        return changed

    async def update(self, community_id: GuildID, case_id: str, **fields: Any) -> Infraction:
        """Patch the appeal reference of an infraction.

        Only ``appealed`` and ``appeal_id`` may change; they are kept
        consistent with each other.

        Raises:
            ValidationError: For any other field, or inconsistent values.
            InfractionNotFound: If no such infraction exists.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Infraction field(s) cannot be updated: {', '.join(sorted(unknown))}")

        appeal_id = fields.get("appeal_id")
        appealed = fields.get("appealed", appeal_id is not None)
        if appealed != (appeal_id is not None):
            raise ValidationError("appealed must be set exactly when appeal_id is set.")

        async with self._connection.transaction() as conn:
            if not await self._infractions.set_appeal(conn, community_id, case_id, appeal_id):
                raise InfractionNotFound(case_id)
            updated = await self._infractions.get(conn, community_id, case_id)
        return updated

    async def count_active(self, community_id: GuildID, subject_id: UserID, kind: InfractionKind) -> int:
        """Number of active infractions of ``kind`` held by the subject."""
        async with self._connection.read() as conn:
            return await self._infractions.count_active(conn, community_id, subject_id, kind)

    async def list_active_timed_mutes(self) -> List[Infraction]:
        """Active temporary mutes across all communities, soonest expiry first."""
        async with self._connection.read() as conn:
            return await self._infractions.list_active_timed_mutes(conn)

    async def close_infractions(
        self,
        community_id: GuildID,
        case_ids: Iterable[str],
        audit: Optional[Infraction] = None,
        *,
        note_for: Optional[Callable[[str], Infraction]] = None,
    ) -> List[str]:
        """Deactivate several infractions and record audit entries, atomically.

        ``audit`` is written once if at least one infraction actually
        changed, so a lost race leaves no trace. ``note_for`` builds one
        extra record per changed id.

        Returns:
            The ids that were active before this call.
        """
        async with self._connection.transaction() as conn:
            changed = await self._infractions.deactivate_many(conn, community_id, case_ids)
            if changed and audit is not None:
                await self._infractions.insert(conn, audit)
            if note_for is not None:
                for case_id in changed:
                    await self._infractions.insert(conn, note_for(case_id))
        if changed:
            logger.debug("[INFRACTION STORE] Closed %s in %s", ", ".join(changed), community_id)
        return changed

    # ------------------------------------------------------------------
    # Appeals
    # ------------------------------------------------------------------

    async def create_appeal(self, appeal: Appeal) -> Appeal:
        """Insert a pending appeal and attach it to its infraction in one commit.

        Raises:
            DuplicateId: If an appeal with the same id exists.
            InfractionNotFound: If the referenced infraction disappeared.
        """
        try:
            async with self._connection.transaction() as conn:
                await self._appeals.insert(conn, appeal)
                if not await self._infractions.set_appeal(conn, appeal.community_id, appeal.case_id, appeal.id):
                    raise InfractionNotFound(appeal.case_id)
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc).upper():
                raise InfractionNotFound(appeal.case_id) from exc
            raise DuplicateId(appeal.id) from exc

        logger.debug("[INFRACTION STORE] Created appeal %s for %s", appeal.id, appeal.case_id)
        return appeal

    async def get_appeal(self, appeal_id: str) -> Appeal:
        async with self._connection.read() as conn:
            appeal = await self._appeals.get(conn, appeal_id)
        if appeal is None:
            raise AppealNotFound(appeal_id)
        return appeal

    async def find_pending_appeal(self, community_id: GuildID, subject_id: UserID) -> Optional[Appeal]:
        async with self._connection.read() as conn:
            return await self._appeals.find_pending(conn, community_id, subject_id)

    async def list_appeals(self, community_id: GuildID, subject_id: UserID) -> List[Appeal]:
        async with self._connection.read() as conn:
            return await self._appeals.list_for_user(conn, community_id, subject_id)

    async def list_pending_appeals(self, community_id: GuildID) -> List[Appeal]:
        async with self._connection.read() as conn:
            return await self._appeals.list_pending(conn, community_id)

    async def resolve_appeal(
        self,
        appeal: Appeal,
        *,
        close_ids: Iterable[str] = (),
        audit: Optional[Infraction] = None,
    ) -> Appeal:
        """Write an appeal's terminal status in one commit.

        ``appeal`` is the already-resolved copy. The infractions in
        ``close_ids`` are deactivated in the same commit, and ``audit`` is
        recorded only if at least one of them changed.

        Raises:
            AlreadyResolved: If the stored appeal is no longer pending.
        """
        async with self._connection.transaction() as conn:
            if not await self._appeals.resolve(conn, appeal):
                stored = await self._appeals.get(conn, appeal.id)
                if stored is None:
                    raise AppealNotFound(appeal.id)
                raise AlreadyResolved(appeal.id, stored.status)

            changed = await self._infractions.deactivate_many(conn, appeal.community_id, close_ids)
            if changed and audit is not None:
                await self._infractions.insert(conn, audit)

        logger.debug("[INFRACTION STORE] Resolved appeal %s as %s", appeal.id, appeal.status)
        return appeal
