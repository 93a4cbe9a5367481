import asyncio
from datetime import timedelta

import pytest

from conftest import GUILD, MODERATOR, USER
from modwarden.datatypes.infraction_datatypes import SYSTEM_ISSUER, InfractionFilter, InfractionKind
from modwarden.errors import PermissionDenied
from modwarden.moderation.notifications import EventKind


async def warn_times(engine, count):
    outcomes = []
    for number in range(count):
        outcomes.append(await engine.escalation.issue_warning(GUILD, USER, MODERATOR, f"warning {number + 1}"))
    return outcomes


@pytest.mark.asyncio
async def test_no_punishment_up_to_threshold(engine, actuator):
    outcomes = await warn_times(engine, 3)

    assert [o.active_warnings for o in outcomes] == [1, 2, 3]
    assert all(o.tier_index is None and o.punishment is None for o in outcomes)
    assert actuator.calls == []


@pytest.mark.asyncio
async def test_ladder_for_fourth_to_eighth_warning(engine, actuator):
    outcomes = await warn_times(engine, 8)
    escalated = outcomes[3:]

    assert [o.tier_index for o in escalated] == [1, 2, 3, 4, 5]

    two_hour, day, ban, final_ban, clamped = (o.punishment for o in escalated)
    assert two_hour.kind is InfractionKind.MUTE and two_hour.duration == timedelta(hours=2)
    assert day.kind is InfractionKind.MUTE and day.duration == timedelta(hours=24)
    assert ban.kind is InfractionKind.BAN and ban.appealable is True
    assert final_ban.kind is InfractionKind.BAN and final_ban.appealable is False
    assert clamped.kind is InfractionKind.BAN and clamped.appealable is False

    assert two_hour.reason == "automatic escalation after 4 warnings"
    assert clamped.reason == "automatic escalation after 8 warnings"
    assert all(o.punishment.issuer_id == SYSTEM_ISSUER for o in escalated)
    assert actuator.count("grant_mute_role") == 2
    assert actuator.count("ban_user") == 3


@pytest.mark.asyncio
async def test_actuator_failure_records_nothing_and_next_warning_retries(engine, actuator):
    await warn_times(engine, 3)
    actuator.fail_next("grant_mute_role", PermissionDenied("grant mute role", "missing Manage Roles"))

    failed = await engine.escalation.issue_warning(GUILD, USER, MODERATOR, "fourth")
    assert failed.tier_index == 1
    assert failed.punishment is None
    assert isinstance(failed.escalation_error, PermissionDenied)
    assert failed.warning is not None
    mutes = await engine.store.list_by_user(GUILD, USER, InfractionFilter.of_kind(InfractionKind.MUTE))
    assert mutes == []

    retried = await engine.escalation.issue_warning(GUILD, USER, MODERATOR, "fifth")
    assert retried.tier_index == 2
    assert retried.punishment.kind is InfractionKind.MUTE
    assert retried.punishment.duration == timedelta(hours=24)


@pytest.mark.asyncio
async def test_tier_is_recomputed_after_warnings_are_cleared(engine):
    await warn_times(engine, 4)
    cleared = await engine.moderation.clear_warnings(GUILD, USER, MODERATOR, "fresh start")
    assert cleared == 4

    outcomes = await warn_times(engine, 4)
    assert outcomes[-1].tier_index == 1
    assert outcomes[-1].punishment.duration == timedelta(hours=2)


@pytest.mark.asyncio
async def test_custom_threshold_is_respected(engine, policies):
    await policies.update(GUILD, warn_threshold=1)

    outcomes = await warn_times(engine, 2)
    assert outcomes[0].punishment is None
    assert outcomes[1].tier_index == 1


@pytest.mark.asyncio
async def test_concurrent_warnings_see_distinct_counts(engine):
    await warn_times(engine, 2)

    outcomes = await asyncio.gather(
        engine.escalation.issue_warning(GUILD, USER, MODERATOR, "a"),
        engine.escalation.issue_warning(GUILD, USER, MODERATOR, "b"),
        engine.escalation.issue_warning(GUILD, USER, MODERATOR, "c"),
    )
    assert sorted(o.active_warnings for o in outcomes) == [3, 4, 5]
    assert sorted(o.tier_index or 0 for o in outcomes) == [0, 1, 2]


@pytest.mark.asyncio
async def test_escalate_without_new_warning(engine, actuator):
    await warn_times(engine, 3)
    outcome = await engine.escalation.escalate(GUILD, USER)
    assert outcome.warning is None
    assert outcome.punishment is None
    assert actuator.calls == []


@pytest.mark.asyncio
async def test_scenario_four_warnings_then_mute_expires(engine, actuator, clock, sink):
    outcomes = await warn_times(engine, 3)
    assert outcomes[-1].active_warnings == 3
    assert actuator.calls == []

    fourth = await engine.escalation.issue_warning(GUILD, USER, MODERATOR, "fourth")
    mute = fourth.punishment
    assert mute.kind is InfractionKind.MUTE
    assert mute.expires_at == clock.now() + timedelta(hours=2)
    assert actuator.count("grant_mute_role") == 1
    assert engine.scheduler.armed_case(GUILD, USER) == mute.id

    clock.advance(timedelta(hours=2))
    await engine.scheduler.drain()

    assert actuator.count("revoke_mute_role") == 1
    assert (await engine.store.get_by_id(GUILD, mute.id)).active is False
    assert engine.scheduler.armed_case(GUILD, USER) is None
    assert len(sink.of_kind(EventKind.INFRACTION_LIFTED)) == 1
