"""
Repository for the ``appeals`` table.
"""

from __future__ import annotations

from typing import List, Optional

import aiosqlite

from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import Appeal, AppealStatus, InfractionKind
from modwarden.util.format_utils import from_unix, to_unix

_COLUMNS = (
    "id, guild_id, user_id, case_id, infraction_kind, reason, status, "
    "submitted_at, reviewer_id, review_reason, reviewed_at"
)


def _row_to_appeal(row) -> Appeal:
    return Appeal(
        id=row["id"],
        community_id=GuildID(row["guild_id"]),
        subject_id=UserID(row["user_id"]),
        case_id=row["case_id"],
        infraction_kind=InfractionKind(row["infraction_kind"]),
        reason=row["reason"],
        status=AppealStatus(row["status"]),
        submitted_at=from_unix(row["submitted_at"]),
        reviewer_id=row["reviewer_id"],
        review_reason=row["review_reason"],
        reviewed_at=from_unix(row["reviewed_at"]),
    )


class AppealRepository:
    """CRUD for the appeals table."""

    async def insert(self, conn: aiosqlite.Connection, appeal: Appeal) -> None:
        await conn.execute(
            f"INSERT INTO appeals ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                appeal.id,
                str(appeal.community_id),
                str(appeal.subject_id),
                appeal.case_id,
                appeal.infraction_kind.value,
                appeal.reason,
                appeal.status.value,
                to_unix(appeal.submitted_at),
                appeal.reviewer_id,
                appeal.review_reason,
                to_unix(appeal.reviewed_at),
            ),
        )

    async def resolve(self, conn: aiosqlite.Connection, appeal: Appeal) -> bool:
        """Write the terminal status of ``appeal``.

        Only a row still PENDING is touched, so the status can change once.
        Returns False when the row was already resolved.
        """
        cursor = await conn.execute(
            """
            UPDATE appeals
               SET status = ?, reviewer_id = ?, review_reason = ?, reviewed_at = ?
             WHERE id = ? AND status = 'PENDING'
            """,
            (
                appeal.status.value,
                appeal.reviewer_id,
                appeal.review_reason,
                to_unix(appeal.reviewed_at),
                appeal.id,
            ),
        )
        return cursor.rowcount > 0

    async def get(self, conn: aiosqlite.Connection, appeal_id: str) -> Optional[Appeal]:
        async with conn.execute(f"SELECT {_COLUMNS} FROM appeals WHERE id = ?", (appeal_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_appeal(row) if row is not None else None

    async def find_pending(self, conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID) -> Optional[Appeal]:
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM appeals WHERE guild_id = ? AND user_id = ? AND status = 'PENDING' "
            "ORDER BY submitted_at DESC LIMIT 1",
            (str(guild_id), str(user_id)),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_appeal(row) if row is not None else None

    async def list_for_user(self, conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID) -> List[Appeal]:
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM appeals WHERE guild_id = ? AND user_id = ? ORDER BY submitted_at DESC, id DESC",
            (str(guild_id), str(user_id)),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_appeal(row) for row in rows]

    async def list_pending(self, conn: aiosqlite.Connection, guild_id: GuildID) -> List[Appeal]:
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM appeals WHERE guild_id = ? AND status = 'PENDING' ORDER BY submitted_at ASC",
            (str(guild_id),),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_appeal(row) for row in rows]
