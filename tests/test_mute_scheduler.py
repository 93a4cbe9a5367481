import asyncio
from datetime import timedelta

import pytest

from conftest import GUILD, MODERATOR, OTHER_USER, START, USER, FakeActuator, FakeClock, RecordingSink
from modwarden.datatypes.infraction_datatypes import Infraction, InfractionFilter, InfractionKind
from modwarden.errors import ExternalActionFailure, TargetNotFound, ValidationError
from modwarden.moderation.clock import SystemClock
from modwarden.moderation.engine import ModerationEngine
from modwarden.moderation.notifications import EventKind
from modwarden.util.case_ids import generate_case_id


def stored_mute(expires_at, *, subject=USER, created_at=START):
    return Infraction(
        id=generate_case_id(GUILD, created_at),
        community_id=GUILD,
        subject_id=subject,
        issuer_id=MODERATOR,
        kind=InfractionKind.MUTE,
        reason="spam",
        created_at=created_at,
        expires_at=expires_at,
    )


async def active_mutes(engine, subject=USER):
    return await engine.store.list_by_user(
        GUILD, subject, InfractionFilter.of_kind(InfractionKind.MUTE, active_only=True)
    )


@pytest.mark.asyncio
async def test_timer_fires_at_expiry_and_not_before(engine, clock, actuator):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(minutes=10))

    clock.advance(timedelta(minutes=10) - timedelta(seconds=2))
    await engine.scheduler.drain()
    assert actuator.count("revoke_mute_role") == 0
    assert engine.scheduler.armed_case(GUILD, USER) == mute.id

    clock.advance(timedelta(seconds=4))
    await engine.scheduler.drain()
    assert actuator.count("revoke_mute_role") == 1
    assert await active_mutes(engine) == []


@pytest.mark.asyncio
async def test_recover_lifts_past_due_mutes_before_returning(engine, clock, actuator, sink):
    overdue = stored_mute(START - timedelta(hours=1), created_at=START - timedelta(hours=3))
    await engine.store.create(overdue)

    report = await engine.scheduler.recover()

    assert report.expired == [overdue.id]
    assert report.armed == []
    assert report.failed == []
    assert actuator.count("revoke_mute_role") == 1
    assert (await engine.store.get_by_id(GUILD, overdue.id)).active is False
    assert len(sink.of_kind(EventKind.INFRACTION_LIFTED)) == 1

    unmutes = await engine.store.list_by_user(GUILD, USER, InfractionFilter.of_kind(InfractionKind.UNMUTE))
    assert len(unmutes) == 1
    assert unmutes[0].reason == "Mute expired"


@pytest.mark.asyncio
async def test_recover_arms_future_mutes_at_their_expiry(engine, clock, actuator):
    expires_at = START + timedelta(hours=1)
    pending = stored_mute(expires_at, created_at=START - timedelta(hours=1))
    await engine.store.create(pending)

    report = await engine.scheduler.recover()

    assert report.armed == [pending.id]
    assert [timer.when for timer in clock.live_timers] == [expires_at]

    clock.advance(timedelta(hours=1) - timedelta(seconds=2))
    await engine.scheduler.drain()
    assert actuator.count("revoke_mute_role") == 0

    clock.advance(timedelta(seconds=4))
    await engine.scheduler.drain()
    assert actuator.count("revoke_mute_role") == 1


@pytest.mark.asyncio
async def test_recover_reports_failures_and_keeps_mute_active(engine, actuator):
    overdue = stored_mute(START - timedelta(minutes=5), created_at=START - timedelta(hours=1))
    await engine.store.create(overdue)
    actuator.fail_next("revoke_mute_role")

    report = await engine.scheduler.recover()

    assert report.expired == []
    assert report.failed == [overdue.id]
    assert (await engine.store.get_by_id(GUILD, overdue.id)).active is True


@pytest.mark.asyncio
async def test_arm_replaces_previous_timer(engine, clock):
    first = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(hours=1))
    second = await engine.moderation.mute(GUILD, USER, MODERATOR, "more spam", timedelta(hours=3))

    assert engine.scheduler.pending == {(GUILD, USER): second.id}
    assert [timer.when for timer in clock.live_timers] == [second.expires_at]
    assert first.id != second.id


@pytest.mark.asyncio
async def test_arm_rejects_non_mutes(engine):
    warning = await engine.moderation.warn(GUILD, USER, MODERATOR, "rude")
    with pytest.raises(ValidationError):
        engine.scheduler.arm(warning)


@pytest.mark.asyncio
async def test_shorter_mute_expiring_keeps_role_while_longer_one_runs(engine, clock, actuator):
    long_mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "long", timedelta(hours=3))
    short_mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "short", timedelta(hours=1))
    assert engine.scheduler.armed_case(GUILD, USER) == short_mute.id

    clock.advance(timedelta(hours=1))
    await engine.scheduler.drain()

    assert actuator.count("revoke_mute_role") == 0
    assert [m.id for m in await active_mutes(engine)] == [long_mute.id]
    assert engine.scheduler.armed_case(GUILD, USER) == long_mute.id

    clock.advance(timedelta(hours=2))
    await engine.scheduler.drain()
    assert actuator.count("revoke_mute_role") == 1
    assert await active_mutes(engine) == []


@pytest.mark.asyncio
async def test_release_and_expiry_race_unmute_once(engine, clock, actuator, sink):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(minutes=30))

    clock.advance(timedelta(minutes=30))
    released = await engine.moderation.unmute(GUILD, USER, MODERATOR, "served")
    await engine.scheduler.drain()

    assert actuator.count("revoke_mute_role") == 1
    assert len(sink.of_kind(EventKind.INFRACTION_LIFTED)) == 1
    assert (await engine.store.get_by_id(GUILD, mute.id)).active is False
    unmutes = await engine.store.list_by_user(GUILD, USER, InfractionFilter.of_kind(InfractionKind.UNMUTE))
    assert len(unmutes) == 1
    assert released is None or released.id == unmutes[0].id


@pytest.mark.asyncio
async def test_concurrent_expire_calls_deactivate_once(engine, actuator, sink):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(minutes=5))
    engine.scheduler.cancel(GUILD, USER)

    results = await asyncio.gather(
        engine.scheduler.expire(GUILD, USER, [mute.id]),
        engine.scheduler.expire(GUILD, USER, [mute.id]),
    )

    assert sorted(results, key=len) == [[], [mute.id]]
    assert actuator.count("revoke_mute_role") == 1
    assert len(sink.of_kind(EventKind.INFRACTION_LIFTED)) == 1


@pytest.mark.asyncio
async def test_failed_expiry_leaves_mute_active(engine, clock, actuator, sink):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(minutes=5))
    actuator.fail_next("revoke_mute_role", TargetNotFound("revoke mute role", "member left"))

    clock.advance(timedelta(minutes=5))
    await engine.scheduler.drain()

    assert (await engine.store.get_by_id(GUILD, mute.id)).active is True
    assert sink.of_kind(EventKind.INFRACTION_LIFTED) == []


@pytest.mark.asyncio
async def test_release_without_active_mute_makes_no_call(engine, actuator):
    assert await engine.scheduler.release(GUILD, USER, MODERATOR, "nothing to do") is None
    assert actuator.calls == []


@pytest.mark.asyncio
async def test_release_failure_rearms_timer_and_propagates(engine, actuator):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(hours=1))
    actuator.fail_next("revoke_mute_role")

    with pytest.raises(ExternalActionFailure):
        await engine.scheduler.release(GUILD, USER, MODERATOR, "early release")

    assert engine.scheduler.armed_case(GUILD, USER) == mute.id
    assert (await engine.store.get_by_id(GUILD, mute.id)).active is True


@pytest.mark.asyncio
async def test_release_lifts_permanent_and_timed_mutes(engine, actuator):
    await engine.moderation.mute(GUILD, USER, MODERATOR, "forever")
    await engine.moderation.mute(GUILD, USER, MODERATOR, "a while", timedelta(hours=1))

    audit = await engine.scheduler.release(GUILD, USER, MODERATOR, "pardon")

    assert audit.kind is InfractionKind.UNMUTE
    assert audit.issuer_id == MODERATOR
    assert await active_mutes(engine) == []
    assert engine.scheduler.pending == {}
    assert actuator.count("revoke_mute_role") == 1


@pytest.mark.asyncio
async def test_lift_of_last_mute_revokes_role_and_cancels_timer(engine, actuator, sink):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(hours=1))

    closed = await engine.scheduler.lift(GUILD, USER, mute.id, MODERATOR, "pardon")

    assert closed == [mute.id]
    assert actuator.count("revoke_mute_role") == 1
    assert engine.scheduler.pending == {}
    assert len(sink.of_kind(EventKind.INFRACTION_LIFTED)) == 1
    assert await engine.scheduler.lift(GUILD, USER, mute.id, MODERATOR, "pardon") == []
    assert actuator.count("revoke_mute_role") == 1


@pytest.mark.asyncio
async def test_lift_failure_keeps_mute_and_timer(engine, actuator):
    mute = await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(hours=1))
    actuator.fail_next("revoke_mute_role")

    with pytest.raises(ExternalActionFailure):
        await engine.scheduler.lift(GUILD, USER, mute.id, MODERATOR, "pardon")

    assert (await engine.store.get_by_id(GUILD, mute.id)).active is True
    assert engine.scheduler.armed_case(GUILD, USER) == mute.id

@pytest.mark.asyncio
async def test_timers_are_independent_per_user(engine, clock, actuator):
    await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(minutes=10))
    other = await engine.moderation.mute(GUILD, OTHER_USER, MODERATOR, "spam", timedelta(minutes=20))

    clock.advance(timedelta(minutes=10))
    await engine.scheduler.drain()

    assert [call[2] for call in actuator.calls if call[0] == "revoke_mute_role"] == [USER]
    assert engine.scheduler.armed_case(GUILD, OTHER_USER) == other.id


@pytest.mark.asyncio
async def test_shutdown_cancels_all_timers(engine, clock):
    await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(minutes=10))
    await engine.moderation.mute(GUILD, OTHER_USER, MODERATOR, "spam", timedelta(minutes=10))

    await engine.scheduler.shutdown()

    assert engine.scheduler.pending == {}
    assert clock.live_timers == []


@pytest.mark.asyncio
async def test_system_clock_timer_fires(connection, policies):
    actuator = FakeActuator()
    sink = RecordingSink()
    engine = ModerationEngine.build(connection, policies, actuator, sink=sink, clock=SystemClock())
    try:
        await engine.moderation.mute(GUILD, USER, MODERATOR, "spam", timedelta(milliseconds=50))
        for _ in range(50):
            await asyncio.sleep(0.02)
            if actuator.count("revoke_mute_role"):
                break
        await engine.scheduler.drain()
        assert actuator.count("revoke_mute_role") == 1
        assert len(sink.of_kind(EventKind.INFRACTION_LIFTED)) == 1
    finally:
        await engine.scheduler.shutdown()


def test_fake_clock_fires_in_order():
    clock = FakeClock()
    fired = []
    clock.call_at(START + timedelta(seconds=2), lambda: fired.append("late"))
    clock.call_at(START + timedelta(seconds=1), lambda: fired.append("early"))

    clock.advance(5)

    assert fired == ["early", "late"]
