"""
Repository for the ``community_policy`` table.

Handles only the stored columns; the escalation ladder comes from the
application config and is attached by the policy store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import aiosqlite

from modwarden.datatypes.discord_datatypes import GuildID


@dataclass
class CommunityPolicyRow:
    """Raw DB row for one community's policy."""
    guild_id: str
    warn_threshold: int
    allow_appeals: bool
    appeal_cooldown_hours: int
    dm_notifications: bool
    muted_role_id: Optional[int]
    moderator_role_id: Optional[int]
    log_channel_id: Optional[int]
    appeal_channel_id: Optional[int]


class CommunityPolicyRepository:
    """CRUD for the community_policy table only."""

    async def get(self, conn: aiosqlite.Connection, guild_id: GuildID) -> CommunityPolicyRow | None:
        async with conn.execute(
            """
            SELECT guild_id, warn_threshold, allow_appeals, appeal_cooldown_hours,
                   dm_notifications, muted_role_id, moderator_role_id,
                   log_channel_id, appeal_channel_id
            FROM community_policy
            WHERE guild_id = ?
            """,
            (str(guild_id),),
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return None

        return CommunityPolicyRow(
            guild_id=row[0],
            warn_threshold=int(row[1]),
            allow_appeals=bool(row[2]),
            appeal_cooldown_hours=int(row[3]),
            dm_notifications=bool(row[4]),
            muted_role_id=row[5],
            moderator_role_id=row[6],
            log_channel_id=row[7],
            appeal_channel_id=row[8],
        )

    async def upsert(self, conn: aiosqlite.Connection, row: CommunityPolicyRow) -> None:
        await conn.execute(
            """
            INSERT INTO community_policy (
                guild_id, warn_threshold, allow_appeals, appeal_cooldown_hours,
                dm_notifications, muted_role_id, moderator_role_id,
                log_channel_id, appeal_channel_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                warn_threshold        = excluded.warn_threshold,
                allow_appeals         = excluded.allow_appeals,
                appeal_cooldown_hours = excluded.appeal_cooldown_hours,
                dm_notifications      = excluded.dm_notifications,
                muted_role_id         = excluded.muted_role_id,
                moderator_role_id     = excluded.moderator_role_id,
                log_channel_id        = excluded.log_channel_id,
                appeal_channel_id     = excluded.appeal_channel_id,
                updated_at            = CURRENT_TIMESTAMP
            """,
            (
                str(row.guild_id),
                row.warn_threshold,
                1 if row.allow_appeals else 0,
                row.appeal_cooldown_hours,
                1 if row.dm_notifications else 0,
                row.muted_role_id,
                row.moderator_role_id,
                row.log_channel_id,
                row.appeal_channel_id,
            ),
        )

    async def delete(self, conn: aiosqlite.Connection, guild_id: GuildID) -> None:
        await conn.execute("DELETE FROM community_policy WHERE guild_id = ?", (str(guild_id),))
