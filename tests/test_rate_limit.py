from __future__ import annotations

import pytest

from spending_guard.errors import RateLimitedError
from spending_guard.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _limiter(clock: FakeClock, n: int = 10, window: float = 60.0) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(n, window, clock=clock, sleep=clock.sleep)


def test_admits_up_to_limit_then_reports_retry_after():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(10):
        clock.now += 1.0
        assert limiter.try_acquire() == (True, 0.0)

    # Oldest admission was at t=1; at t=10 it frees at t=61.
    admitted, retry_after = limiter.try_acquire()
    assert admitted is False
    assert retry_after == pytest.approx(51.0)
    assert limiter.remaining() == 0


def test_window_slides_and_frees_slots():
    clock = FakeClock()
    limiter = _limiter(clock, n=2, window=60.0)
    assert limiter.try_acquire()[0]
    clock.now = 30.0
    assert limiter.try_acquire()[0]
    assert not limiter.try_acquire()[0]

    clock.now = 60.0  # first entry expires exactly at the window edge
    assert limiter.remaining() == 1
    assert limiter.try_acquire()[0]
    assert not limiter.try_acquire()[0]


def test_acquire_waits_for_next_slot_within_max_wait():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(10):
        limiter.try_acquire()

    clock.now = 50.0
    waited = limiter.acquire(max_wait=30.0)

    assert waited == pytest.approx(10.0)
    assert clock.sleeps == [pytest.approx(10.0)]
    assert clock.now == pytest.approx(60.0)


def test_acquire_raises_when_next_slot_is_beyond_max_wait():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(10):
        limiter.try_acquire()

    with pytest.raises(RateLimitedError) as ei:
        limiter.acquire(max_wait=30.0)

    assert ei.value.retry_after == pytest.approx(60.0)
    assert clock.sleeps == []


@pytest.mark.parametrize(("n", "window"), [(0, 60.0), (5, 0.0)])
def test_rejects_invalid_configuration(n: int, window: float):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(n, window)
