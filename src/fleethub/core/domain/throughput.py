"""Exponentially smoothed transfer rate and ETA."""

import math
import time
from collections.abc import Callable


class ThroughputEstimator:
    """Smoothed bytes/second over a monotonically increasing byte counter.

    A new sample is taken at most every ``min_interval`` seconds and only
    when the counter moved. ``rate = old * (1 - alpha) + instant * alpha``.
    """

    def __init__(
        self,
        alpha: float = 0.4,
        min_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._alpha = alpha
        self._min_interval = min_interval
        self._clock = clock
        self._last_bytes: int | None = None
        self._last_time = 0.0
        self._rate: float | None = None

    @property
    def rate(self) -> float | None:
        return self._rate

    def update(self, transferred: int) -> float | None:
        """Feed the current byte counter; returns the smoothed rate."""
        now = self._clock()
        if self._last_bytes is None:
            self._last_bytes = transferred
            self._last_time = now
            return self._rate

        elapsed = now - self._last_time
        delta = transferred - self._last_bytes
        if elapsed < self._min_interval or delta <= 0:
            return self._rate

        instant = delta / elapsed
        if self._rate is None:
            self._rate = instant
        else:
            self._rate = self._rate * (1 - self._alpha) + instant * self._alpha
        self._last_bytes = transferred
        self._last_time = now
        return self._rate

    def eta(self, transferred: int, total: int) -> int | None:
        """Seconds remaining, or None until a rate is known."""
        if not self._rate or total <= 0:
            return None
        remaining = max(total - transferred, 0)
        return math.ceil(remaining / self._rate)

    def reset(self) -> None:
        self._last_bytes = None
        self._last_time = 0.0
        self._rate = None
