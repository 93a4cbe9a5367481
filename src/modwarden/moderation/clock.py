"""
Wall-clock access and delayed callbacks.

The engine never calls ``datetime.now`` or ``loop.call_later`` directly;
it goes through a ``Clock`` so tests can substitute a manual one.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...

    def call_at(self, when: datetime, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` on the event loop at wall-clock time ``when``."""
        ...


class SystemClock:
    """``Clock`` backed by the system time and the running asyncio loop.

    ``call_at`` converts the wall-clock target into a delay once, when the
    timer is armed. Times already in the past fire on the next loop pass.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_at(self, when: datetime, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        delay = max(0.0, (when - self.now()).total_seconds())
        return loop.call_later(delay, callback)
