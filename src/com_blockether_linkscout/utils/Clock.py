"""
Clock abstraction used by every time-dependent stage of the linking pipeline.

Production code runs on SystemClock. Tests inject ManualClock, whose sleeps
advance virtual time instead of waiting, so rate limiting, cache expiry and
batch scheduling can be exercised deterministically.
"""

import time
from typing import List, Protocol, runtime_checkable

import anyio
from anyio.lowlevel import checkpoint


@runtime_checkable
class Clock(Protocol):
    """Source of the current time and of suspension."""

    def now(self) -> float:
        """Current time in seconds since the epoch."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""
        ...


class SystemClock:
    """Wall clock backed by time.time() and anyio.sleep()."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await anyio.sleep(max(0.0, seconds))


class ManualClock:
    """
    Virtual clock for tests.

    sleep() advances the clock by the requested amount and yields control once,
    so concurrent tasks still interleave but no real time passes.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward without suspending."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self._now += seconds
        await checkpoint()
