"""
Per-community moderation policy (the engine's PolicyProvider).

``get`` never fails for an unknown community: it returns the configured
defaults (threshold 3, appeals allowed) until a moderator stores a policy.
Loaded policies are cached; ``update`` writes through and refreshes the
cache only after the write committed.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional, Protocol

from modwarden.database.db_connection import ConnectionManager
from modwarden.datatypes.discord_datatypes import GuildID
from modwarden.datatypes.policy_datatypes import (
    DEFAULT_LADDER,
    EDITABLE_POLICY_FIELDS,
    CommunityPolicy,
    EscalationLadder,
)
from modwarden.errors import ValidationError
from modwarden.repositories import CommunityPolicyRepository, CommunityPolicyRow
from modwarden.util.logger import get_logger

logger = get_logger("community_policy")


class PolicyProvider(Protocol):
    """Read-only policy lookup used by the engine."""

    async def get(self, community_id: GuildID) -> CommunityPolicy: ...


class CommunityPolicyStore:
    """Cached, database-backed ``PolicyProvider`` with moderator updates."""

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        ladder: EscalationLadder = DEFAULT_LADDER,
    ) -> None:
        self._connection = connection
        self._repo = CommunityPolicyRepository()
        self._defaults = dict(defaults or {})
        self._ladder = ladder
        self._cache: Dict[GuildID, CommunityPolicy] = {}
        self._per_guild_locks: Dict[GuildID, asyncio.Lock] = {}

        unknown = set(self._defaults) - EDITABLE_POLICY_FIELDS
        if unknown:
            raise ValidationError(f"Unknown policy default(s): {', '.join(sorted(unknown))}")
        CommunityPolicy(GuildID(0), ladder=ladder, **self._defaults).validate()

    def _lock_for(self, community_id: GuildID) -> asyncio.Lock:
        if community_id not in self._per_guild_locks:
            self._per_guild_locks[community_id] = asyncio.Lock()
        return self._per_guild_locks[community_id]

    def default_policy(self, community_id: GuildID) -> CommunityPolicy:
        return CommunityPolicy(community_id=community_id, ladder=self._ladder, **self._defaults)

    async def get(self, community_id: GuildID) -> CommunityPolicy:
        """Return the community's policy, or the defaults when none is stored."""
        cached = self._cache.get(community_id)
        if cached is not None:
            return cached

        async with self._connection.read() as conn:
            row = await self._repo.get(conn, community_id)

        policy = self.default_policy(community_id) if row is None else self._row_to_policy(row)
        self._cache[community_id] = policy
        return policy

    async def update(self, community_id: GuildID, **changes: Any) -> CommunityPolicy:
        """Validate and persist changed policy fields.

        Raises:
            ValidationError: For unknown fields or out-of-range values.
        """
        unknown = set(changes) - EDITABLE_POLICY_FIELDS
        if unknown:
            raise ValidationError(f"Unknown policy field(s): {', '.join(sorted(unknown))}")

        async with self._lock_for(community_id):
            current = await self.get(community_id)
            updated = replace(current, **changes)
            updated.validate()

            async with self._connection.transaction() as conn:
                await self._repo.upsert(conn, self._policy_to_row(updated))

            self._cache[community_id] = updated

        logger.info("[POLICY] Updated community %s: %s", community_id, ", ".join(sorted(changes)) or "no fields")
        return updated

    async def reset(self, community_id: GuildID) -> CommunityPolicy:
        """Drop the stored policy so the community falls back to defaults."""
        async with self._lock_for(community_id):
            async with self._connection.transaction() as conn:
                await self._repo.delete(conn, community_id)
            self._cache.pop(community_id, None)
        return await self.get(community_id)

    def invalidate(self, community_id: GuildID) -> None:
        """Forget the cached policy; the next ``get`` reads the database."""
        self._cache.pop(community_id, None)

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_policy(self, row: CommunityPolicyRow) -> CommunityPolicy:
        return CommunityPolicy(
            community_id=GuildID(row.guild_id),
            warn_threshold=row.warn_threshold,
            allow_appeals=row.allow_appeals,
            appeal_cooldown_hours=row.appeal_cooldown_hours,
            dm_notifications=row.dm_notifications,
            muted_role_id=row.muted_role_id,
            moderator_role_id=row.moderator_role_id,
            log_channel_id=row.log_channel_id,
            appeal_channel_id=row.appeal_channel_id,
            ladder=self._ladder,
        )

    @staticmethod
    def _policy_to_row(policy: CommunityPolicy) -> CommunityPolicyRow:
        return CommunityPolicyRow(
            guild_id=str(policy.community_id),
            warn_threshold=policy.warn_threshold,
            allow_appeals=policy.allow_appeals,
            appeal_cooldown_hours=policy.appeal_cooldown_hours,
            dm_notifications=policy.dm_notifications,
            muted_role_id=policy.muted_role_id,
            moderator_role_id=policy.moderator_role_id,
            log_channel_id=policy.log_channel_id,
            appeal_channel_id=policy.appeal_channel_id,
        )
