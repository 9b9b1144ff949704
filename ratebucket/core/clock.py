"""Millisecond time sources used by all refill math."""

import time
from typing import Callable

Clock = Callable[[], float]


def system_clock() -> float:
    """Current wall-clock time in milliseconds."""
    return time.time() * 1000.0


class ManualClock:
    """
    Clock that only moves when told to.

    Usage:
        clock = ManualClock()
        bucket = TokenBucket(capacity=10, refill_rate=5, clock=clock)
        clock.advance(2000)
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)

    def __call__(self) -> float:
        return self._now

    @property
    def now(self) -> float:
        return self._now

    def set(self, value_ms: float) -> None:
        self._now = float(value_ms)

    def advance(self, delta_ms: float) -> float:
        self._now += delta_ms
        return self._now
