"""
Tests for the single-connection database manager.
"""

import pytest

from modwarden.database.db_connection import ConnectionManager
from modwarden.database.db_schema import SCHEMA_VERSION


@pytest.mark.asyncio
async def test_open_creates_schema_and_pragmas(connection):
    async with connection.read() as conn:
        async with conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
            tables = {row[0] for row in await cursor.fetchall()}
        async with conn.execute("PRAGMA foreign_keys") as cursor:
            foreign_keys = (await cursor.fetchone())[0]
        async with conn.execute("SELECT MAX(version) FROM schema_version") as cursor:
            version = (await cursor.fetchone())[0]

    assert {"infractions", "appeals", "community_policy", "schema_version"} <= tables
    assert foreign_keys == 1
    assert version == SCHEMA_VERSION


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(connection):
    with pytest.raises(RuntimeError):
        async with connection.transaction() as conn:
            await conn.execute(
                "INSERT INTO community_policy (guild_id, warn_threshold, allow_appeals, appeal_cooldown_hours, "
                "dm_notifications) VALUES ('1', 3, 1, 24, 1)"
            )
            raise RuntimeError("abort")

    async with connection.read() as conn:
        async with conn.execute("SELECT COUNT(*) FROM community_policy") as cursor:
            assert (await cursor.fetchone())[0] == 0


@pytest.mark.asyncio
async def test_reopen_keeps_data(tmp_path):
    path = tmp_path / "nested" / "modwarden.db"
    first = ConnectionManager()
    await first.open(path)
    async with first.transaction() as conn:
        await conn.execute(
            "INSERT INTO community_policy (guild_id, warn_threshold, allow_appeals, appeal_cooldown_hours, "
            "dm_notifications) VALUES ('1', 5, 1, 24, 1)"
        )
    await first.close()
    assert first.is_open is False

    second = ConnectionManager()
    await second.open(path)
    try:
        async with second.read() as conn:
            async with conn.execute("SELECT warn_threshold FROM community_policy WHERE guild_id = '1'") as cursor:
                assert (await cursor.fetchone())[0] == 5
    finally:
        await second.close()


def test_connection_must_be_opened_first():
    with pytest.raises(RuntimeError):
        ConnectionManager().connection
