"""Sliding-window rate limiter for outbound inference calls.

Keeps a deque of admission timestamps; entries older than the window are
evicted on every check. One limiter instance belongs to one gateway, so the
window state has the same lifecycle as the engine that owns it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable

from .errors import RateLimitedError
from .logging_setup import get_logger

_logger = get_logger("spending_guard.rate_limit")


class SlidingWindowRateLimiter:
    """Admit at most ``max_requests`` calls per ``window_seconds``.

    ``clock`` and ``sleep`` are injectable so tests can drive time explicitly;
    both default to the monotonic clock and :func:`time.sleep`.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._max_requests = max_requests
        self._window_seconds = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._admitted: deque[float] = deque()
        self._lock = threading.Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def try_acquire(self) -> tuple[bool, float]:
        """Return ``(admitted, retry_after_seconds)`` without blocking."""

        now = self._clock()
        with self._lock:
            self._evict_old(now)
            if len(self._admitted) >= self._max_requests:
                retry_after = self._window_seconds - (now - self._admitted[0])
                return False, max(retry_after, 0.0)
            self._admitted.append(now)
            return True, 0.0

    def acquire(self, max_wait: float) -> float:
        """Block until a slot frees up; return the seconds spent waiting.

        Raises :class:`RateLimitedError` when the next free slot lies further
        away than ``max_wait`` seconds.
        """

        waited = 0.0
        while True:
            admitted, retry_after = self.try_acquire()
            if admitted:
                return waited
            if waited + retry_after > max_wait:
                _logger.warning(
                    "rate_limit:rejected retry_after=%.2f waited=%.2f max_wait=%.2f",
                    retry_after,
                    waited,
                    max_wait,
                )
                raise RateLimitedError(retry_after)
            _logger.info("rate_limit:queued wait=%.2f", retry_after)
            # Never spin on a zero wait: the oldest entry is about to expire.
            delay = max(retry_after, 0.001)
            self._sleep(delay)
            waited += delay

    def remaining(self) -> int:
        with self._lock:
            self._evict_old(self._clock())
            return max(self._max_requests - len(self._admitted), 0)

    def _evict_old(self, now: float) -> None:
        threshold = now - self._window_seconds
        while self._admitted and self._admitted[0] <= threshold:
            self._admitted.popleft()
