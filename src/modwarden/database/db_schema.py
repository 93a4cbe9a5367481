"""
Database schema initialization and version tracking.

Timestamps are stored as REAL unix seconds (UTC) so comparisons need no
string parsing or timezone conversion.
"""

import aiosqlite

from modwarden.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates tables and indexes for infractions, appeals and policies."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS infractions (
                id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                issuer_id TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('WARNING', 'MUTE', 'UNMUTE', 'BAN', 'UNBAN', 'KICK', 'NOTE')),
                reason TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NULL,
                active INTEGER NOT NULL DEFAULT 1,
                appealed INTEGER NOT NULL DEFAULT 0,
                appeal_id TEXT NULL,
                appealable INTEGER NOT NULL DEFAULT 1,
                CHECK (expires_at IS NULL OR kind = 'MUTE'),
                CHECK ((appealed = 1) = (appeal_id IS NOT NULL))
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS appeals (
                id TEXT PRIMARY KEY,
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                case_id TEXT NOT NULL,
                infraction_kind TEXT NOT NULL,
                reason TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'PENDING' CHECK (status IN ('PENDING', 'APPROVED', 'DENIED')),
                submitted_at REAL NOT NULL,
                reviewer_id TEXT NULL,
                review_reason TEXT NULL,
                reviewed_at REAL NULL,
                FOREIGN KEY (case_id) REFERENCES infractions(id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS community_policy (
                guild_id TEXT PRIMARY KEY,
                warn_threshold INTEGER NOT NULL DEFAULT 3 CHECK (warn_threshold >= 1),
                allow_appeals INTEGER NOT NULL DEFAULT 1,
                appeal_cooldown_hours INTEGER NOT NULL DEFAULT 24 CHECK (appeal_cooldown_hours >= 0),
                dm_notifications INTEGER NOT NULL DEFAULT 1,
                muted_role_id INTEGER NULL,
                moderator_role_id INTEGER NULL,
                log_channel_id INTEGER NULL,
                appeal_channel_id INTEGER NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        # Hot path: active warnings of one user on every new warning
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_infractions_user_kind "
            "ON infractions(guild_id, user_id, kind, active)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_infractions_user_created "
            "ON infractions(guild_id, user_id, created_at DESC)"
        )
        # Startup recovery: only active temporary mutes
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_infractions_timed_mutes "
            "ON infractions(expires_at) WHERE kind = 'MUTE' AND active = 1 AND expires_at IS NOT NULL"
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_user_status ON appeals(guild_id, user_id, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_case_id ON appeals(case_id)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
