"""Client-side request throttling for ARM calls."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests_per_minute: int = 60
    request_window: float = 60.0  # seconds


class SlidingWindowRateLimiter:
    """Keep at most ``max_requests_per_minute`` requests inside the window.

    Requests over the limit are delayed until the oldest timestamp leaves
    the window; they are never dropped.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        window_start = now - self.config.request_window
        while self._timestamps and self._timestamps[0] <= window_start:
            self._timestamps.popleft()

    def acquire(self) -> None:
        """Block until a request may be sent, then record it."""
        with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self.config.max_requests_per_minute:
                    self._timestamps.append(now)
                    return
                wait = self.config.request_window - (now - self._timestamps[0])
                if wait > 0:
                    logger.info("Rate limit reached, waiting %.2fs", wait)
                    self._sleep(wait)

    @property
    def in_window(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._timestamps)
