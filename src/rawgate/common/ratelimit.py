"""Process-local admission control for the proxy."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable

import structlog

LOGGER = structlog.get_logger("rawgate.ratelimit")


class RequestLimiter:
    """Global sliding-window limiter.

    At most ``max_requests`` admissions are granted in any trailing window of
    ``window_seconds``. The window moves with the clock on every call; there is
    no bucket refill and no per-caller partitioning. State lives in this
    process only and is lost on restart.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._admissions: deque[float] = deque()
        self._lock = threading.Lock()

    def admit(self) -> bool:
        """Record an admission and return True, or return False when the window is full."""
        with self._lock:
            now = self._clock()
            self._prune(now - self.window_seconds)
            if len(self._admissions) >= self.max_requests:
                LOGGER.warning(
                    "rate_limit_exceeded",
                    current=len(self._admissions),
                    limit=self.max_requests,
                    window=self.window_seconds,
                )
                return False
            self._admissions.append(now)
            return True

    def current(self) -> int:
        with self._lock:
            self._prune(self._clock() - self.window_seconds)
            return len(self._admissions)

    def reset(self) -> None:
        with self._lock:
            self._admissions.clear()

    def _prune(self, window_start: float) -> None:
        # Timestamps are appended in clock order, so expired ones sit at the left.
        while self._admissions and self._admissions[0] <= window_start:
            self._admissions.popleft()
