"""Sliding-window rate limiter for outbound API calls."""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from leadsync.errors import RunCancelled

logger = logging.getLogger(__name__)

# Small buffer added to computed waits so the oldest slot has surely expired
WAIT_BUFFER_SECONDS = 0.01


@dataclass
class RateLimiterStatus:
    """Snapshot of a limiter for status reporting."""

    name: str
    available_slots: int
    max_slots: int
    window_ms: int
    wait_time_ms: int


class RateLimiter:
    """Bound calls to a remote API within a sliding time window.

    Keeps the admission timestamps of the trailing ``window_ms`` interval.
    A call is admitted only while fewer than ``max_requests`` timestamps
    remain in the window, so no rolling interval ever sees more than
    ``max_requests`` admissions, however many callers race on ``acquire``.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_ms: int,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")

        self.name = name
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._window = window_ms / 1000.0
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._timestamps: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float):
        """Drop admissions that have left the window."""
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _wait_seconds(self, now: float) -> float:
        if len(self._timestamps) < self.max_requests:
            return 0.0
        return max(0.0, self._window - (now - self._timestamps[0]))

    def _try_admit(self) -> float:
        """Admit now if possible. Returns 0 on admission, else the seconds to wait."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) < self.max_requests:
                self._timestamps.append(now)
                return 0.0
            return self._wait_seconds(now) or WAIT_BUFFER_SECONDS

    async def acquire(self, cancel_event: Optional[asyncio.Event] = None):
        """Wait until a slot is free in the current window, then take it."""
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(f"Cancelled while waiting on rate limiter '{self.name}'")

            wait = self._try_admit()
            if wait == 0.0:
                logger.debug(
                    f"[{self.name}] Slot acquired ({len(self._timestamps)}/{self.max_requests} used)"
                )
                return

            # Re-evaluated after waking: other acquirers may have taken the slot
            logger.debug(f"[{self.name}] Rate limit reached, waiting {wait * 1000:.0f}ms")
            await self._sleep(wait + WAIT_BUFFER_SECONDS)

    def try_acquire(self) -> bool:
        """Take a slot if one is free right now. Never blocks."""
        return self._try_admit() == 0.0

    def available_slots(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return self.max_requests - len(self._timestamps)

    def wait_time_ms(self) -> int:
        """Milliseconds until a slot frees up, 0 if one is available now."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            return int(self._wait_seconds(now) * 1000)

    def status(self) -> RateLimiterStatus:
        return RateLimiterStatus(
            name=self.name,
            available_slots=self.available_slots(),
            max_slots=self.max_requests,
            window_ms=self.window_ms,
            wait_time_ms=self.wait_time_ms(),
        )

    def reset(self):
        """Forget all admissions."""
        with self._lock:
            self._timestamps.clear()


@dataclass
class LimiterSet:
    """One limiter per remote, since each remote enforces its own quota."""

    hubspot: RateLimiter
    lemlist: RateLimiter

    def statuses(self) -> list[RateLimiterStatus]:
        return [self.hubspot.status(), self.lemlist.status()]


def build_limiters(settings) -> LimiterSet:
    """Create the source and destination limiters from settings."""
    return LimiterSet(
        hubspot=RateLimiter(
            "hubspot",
            settings.hubspot_rate_limit_requests,
            settings.hubspot_rate_limit_window_ms,
        ),
        lemlist=RateLimiter(
            "lemlist",
            settings.lemlist_rate_limit_requests,
            settings.lemlist_rate_limit_window_ms,
        ),
    )
