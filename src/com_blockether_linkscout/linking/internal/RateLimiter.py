"""
Shared bound on outbound registry calls per time window.
"""

import logging
from collections import deque
from typing import Deque, Optional

from tenacity import AsyncRetrying, RetryCallState, before_sleep_log, retry_if_result

from ...utils.Clock import Clock, SystemClock
from .LinkingTypes import RateWindow

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Counts registry calls over the last window_seconds.

    allow() is the non-blocking check: it records a call and returns True while
    fewer than `limit` calls were made during the window, else returns False.
    acquire() is the deferring form used by workers: it waits for a free slot
    instead of dropping the work.

    GUARANTEES:
    - In any interval of length window_seconds at most `limit` calls are allowed
    - One counter shared by every caller; no per-key limits
    """

    DEFAULT_LIMIT = 100
    DEFAULT_WINDOW_SECONDS = 60.0
    MIN_WAIT_SECONDS = 0.01

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Optional[Clock] = None,
    ):
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self._limit = limit
        self._window = window_seconds
        self._clock = clock or SystemClock()
        self._calls: Deque[float] = deque()
        self.deferred_count = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    def _expire(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self._window:
            self._calls.popleft()

    def allow(self) -> bool:
        now = self._clock.now()
        self._expire(now)
        if len(self._calls) < self._limit:
            self._calls.append(now)
            return True
        return False

    def tick(self) -> None:
        """Reset the window explicitly."""
        self._calls.clear()

    def snapshot(self) -> RateWindow:
        self._expire(self._clock.now())
        return RateWindow(
            count_in_window=len(self._calls),
            window_start=self._calls[0] if self._calls else None,
        )

    def seconds_until_slot(self) -> float:
        now = self._clock.now()
        self._expire(now)
        if len(self._calls) < self._limit:
            return 0.0
        return max(self.MIN_WAIT_SECONDS, self._calls[0] + self._window - now)

    async def acquire(self) -> None:
        """Wait until a call is allowed, then record it."""

        def wait_for_slot(retry_state: RetryCallState) -> float:
            self.deferred_count += 1
            return self.seconds_until_slot()

        async def try_allow() -> bool:
            return self.allow()

        retrying = AsyncRetrying(
            retry=retry_if_result(lambda allowed: not allowed),
            wait=wait_for_slot,
            sleep=self._clock.sleep,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        await retrying(try_allow)
