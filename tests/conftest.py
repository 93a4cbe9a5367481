"""
Pytest configuration and fixtures for modwarden tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modwarden.configuration.community_policy import CommunityPolicyStore  # noqa: E402
from modwarden.database.db_connection import ConnectionManager  # noqa: E402
from modwarden.datatypes.discord_datatypes import GuildID, UserID  # noqa: E402
from modwarden.errors import ExternalActionFailure  # noqa: E402
from modwarden.moderation.engine import ModerationEngine  # noqa: E402

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

GUILD = GuildID(111111111111111111)
USER = UserID(222222222222222222)
OTHER_USER = UserID(333333333333333333)
MODERATOR = "444444444444444444"


class FakeTimer:
    def __init__(self, clock: "FakeClock", when: datetime, callback) -> None:
        self.clock = clock
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """Manual clock: time only moves on ``advance`` and due timers fire then."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start
        self.timers: list[FakeTimer] = []

    def now(self) -> datetime:
        return self.current

    def call_at(self, when: datetime, callback) -> FakeTimer:
        timer = FakeTimer(self, when, callback)
        self.timers.append(timer)
        return timer

    @property
    def live_timers(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, delta) -> None:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self.current += delta
        due = sorted(
            (timer for timer in self.live_timers if timer.when <= self.current),
            key=lambda timer: timer.when,
        )
        for timer in due:
            timer.cancelled = True
            timer.callback()


class FakeActuator:
    """Records every platform call; ``fail_next`` scripts failures per method."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failures: dict[str, list[Exception]] = {}

    def fail_next(self, method: str, exc: Exception | None = None) -> None:
        self.failures.setdefault(method, []).append(exc or ExternalActionFailure(method, "scripted failure"))

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    async def _call(self, method: str, *args) -> None:
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)
        self.calls.append((method, *args))

    async def grant_mute_role(self, community_id, subject_id, reason):
        await self._call("grant_mute_role", community_id, subject_id, reason)

    async def revoke_mute_role(self, community_id, subject_id, reason):
        await self._call("revoke_mute_role", community_id, subject_id, reason)

    async def ban_user(self, community_id, subject_id, reason, *, delete_message_seconds=0):
        await self._call("ban_user", community_id, subject_id, reason)

    async def unban_user(self, community_id, subject_id, reason):
        await self._call("unban_user", community_id, subject_id, reason)

    async def kick_user(self, community_id, subject_id, reason):
        await self._call("kick_user", community_id, subject_id, reason)


class RecordingSink:
    def __init__(self) -> None:
        self.events = []

    async def notify(self, event) -> None:
        self.events.append(event)

    def of_kind(self, kind):
        return [event for event in self.events if event.kind is kind]


@pytest_asyncio.fixture
async def connection(tmp_path):
    """A ConnectionManager opened on a temporary database file."""
    manager = ConnectionManager()
    await manager.open(tmp_path / "modwarden-test.db")
    yield manager
    await manager.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def actuator() -> FakeActuator:
    return FakeActuator()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def policies(connection):
    return CommunityPolicyStore(connection)


@pytest_asyncio.fixture
async def engine(connection, policies, actuator, sink, clock):
    built = ModerationEngine.build(connection, policies, actuator, sink=sink, clock=clock)
    yield built
    await built.scheduler.shutdown()
