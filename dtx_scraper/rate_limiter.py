"""Sliding-window request limiter shared by every request of one HttpClient.

Counts recorded requests inside 1s / 60s / 3600s windows. When any ceiling
is reached the caller sleeps until the next boundary of that window
(``window - now % window``) and checks again, so pacing is coarse and bursty
but never exceeds the configured quotas.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, List, Tuple

from .config import RateLimitConfig

logger = logging.getLogger("dtx_scraper")

SECOND = 1.0
MINUTE = 60.0
HOUR = 3600.0


class RateLimiter:
    def __init__(self, config: RateLimitConfig = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()

    def recorded(self) -> List[float]:
        """Timestamps of requests still inside the hour window, oldest first."""
        with self._lock:
            return list(self._timestamps)

    def _limits(self) -> List[Tuple[float, int]]:
        return [
            (SECOND, self.config.requests_per_second),
            (MINUTE, self.config.requests_per_minute),
            (HOUR, self.config.requests_per_hour),
        ]

    def _prune(self, now: float):
        cutoff = now - HOUR
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _count(self, now: float, window: float) -> int:
        start = now - window
        return sum(1 for ts in self._timestamps if ts > start)

    def wait_time(self, now: float) -> float:
        """Seconds to sleep before another request may go out (0 if none)."""
        for window, limit in self._limits():
            if limit and limit > 0 and self._count(now, window) >= limit:
                return window - (now % window)
        return 0.0

    def check_limit(self):
        """Block until a request fits every quota, then record it."""
        with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                wait = self.wait_time(now)
                if wait <= 0:
                    break
                logger.debug(f"Rate limit reached, sleeping {wait:.3f}s")
                self._sleep(wait)
            self._timestamps.append(now)

    def reset(self):
        with self._lock:
            self._timestamps.clear()
