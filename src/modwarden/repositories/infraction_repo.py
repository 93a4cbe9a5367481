"""
Repository for the ``infractions`` table.

SQL only: no locking, no notifications, no platform calls. Callers decide
which connection (read or transaction) each call runs on.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import aiosqlite

from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import Infraction, InfractionFilter, InfractionKind
from modwarden.util.format_utils import from_unix, to_unix

_COLUMNS = (
    "id, guild_id, user_id, issuer_id, kind, reason, created_at, expires_at, "
    "active, appealed, appeal_id, appealable"
)


def _row_to_infraction(row) -> Infraction:
    return Infraction(
        id=row["id"],
        community_id=GuildID(row["guild_id"]),
        subject_id=UserID(row["user_id"]),
        issuer_id=row["issuer_id"],
        kind=InfractionKind(row["kind"]),
        reason=row["reason"],
        created_at=from_unix(row["created_at"]),
        expires_at=from_unix(row["expires_at"]),
        active=bool(row["active"]),
        appealed=bool(row["appealed"]),
        appeal_id=row["appeal_id"],
        appealable=bool(row["appealable"]),
    )


class InfractionRepository:
    """CRUD for the infractions table."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, conn: aiosqlite.Connection, infraction: Infraction) -> None:
        """Insert a new row. Raises ``sqlite3.IntegrityError`` on a duplicate id."""
        await conn.execute(
            f"INSERT INTO infractions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                infraction.id,
                str(infraction.community_id),
                str(infraction.subject_id),
                infraction.issuer_id,
                infraction.kind.value,
                infraction.reason,
                to_unix(infraction.created_at),
                to_unix(infraction.expires_at),
                1 if infraction.active else 0,
                1 if infraction.appealed else 0,
                infraction.appeal_id,
                1 if infraction.appealable else 0,
            ),
        )

    async def deactivate(self, conn: aiosqlite.Connection, guild_id: GuildID, case_id: str) -> bool:
        """Clear ``active``; returns True only if the row was active before."""
        cursor = await conn.execute(
            "UPDATE infractions SET active = 0 WHERE guild_id = ? AND id = ? AND active = 1",
            (str(guild_id), case_id),
        )
        return cursor.rowcount > 0

    async def set_appeal(
        self, conn: aiosqlite.Connection, guild_id: GuildID, case_id: str, appeal_id: Optional[str]
    ) -> bool:
        """Attach (or detach, with ``None``) an appeal reference."""
        cursor = await conn.execute(
            "UPDATE infractions SET appealed = ?, appeal_id = ? WHERE guild_id = ? AND id = ?",
            (1 if appeal_id is not None else 0, appeal_id, str(guild_id), case_id),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, conn: aiosqlite.Connection, guild_id: GuildID, case_id: str) -> Optional[Infraction]:
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM infractions WHERE guild_id = ? AND id = ?",
            (str(guild_id), case_id),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_infraction(row) if row is not None else None

    async def exists(self, conn: aiosqlite.Connection, case_id: str) -> bool:
        async with conn.execute("SELECT 1 FROM infractions WHERE id = ? LIMIT 1", (case_id,)) as cursor:
            return await cursor.fetchone() is not None

    async def list_for_user(
        self,
        conn: aiosqlite.Connection,
        guild_id: GuildID,
        user_id: UserID,
        selection: InfractionFilter,
    ) -> List[Infraction]:
        """Newest-first list of a user's infractions matching ``selection``."""
        query = f"SELECT {_COLUMNS} FROM infractions WHERE guild_id = ? AND user_id = ?"
        params: list = [str(guild_id), str(user_id)]
        if selection.kind is not None:
            query += " AND kind = ?"
            params.append(selection.kind.value)
        if selection.active_only:
            query += " AND active = 1"
        query += " ORDER BY created_at DESC, id DESC"

        async with conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_infraction(row) for row in rows]

    async def count_active(
        self, conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID, kind: InfractionKind
    ) -> int:
        async with conn.execute(
            "SELECT COUNT(*) FROM infractions WHERE guild_id = ? AND user_id = ? AND kind = ? AND active = 1",
            (str(guild_id), str(user_id), kind.value),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0])

    async def list_active_timed_mutes(self, conn: aiosqlite.Connection) -> List[Infraction]:
        """All active temporary mutes across every community, soonest expiry first."""
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM infractions "
            "WHERE kind = 'MUTE' AND active = 1 AND expires_at IS NOT NULL "
            "ORDER BY expires_at ASC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_infraction(row) for row in rows]

    async def deactivate_many(self, conn: aiosqlite.Connection, guild_id: GuildID, case_ids: Iterable[str]) -> List[str]:
        """Deactivate each id; return the ids that actually changed."""
        changed = []
        for case_id in case_ids:
            if await self.deactivate(conn, guild_id, case_id):
                changed.append(case_id)
        return changed
