"""Streaming latency recorder over rotating HDR histograms.

Samples go into the current interval histogram. Once an interval has passed
it becomes the previous one and a fresh histogram takes its place, so a
snapshot covers between one and two intervals of recent samples and older
samples drop out. Memory use is fixed by the histogram range and precision.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from hdrh.histogram import HdrHistogram

LOWEST_NS = 1
HIGHEST_NS = 60 * 60 * 1_000_000_000
SIGNIFICANT_FIGURES = 3
DEFAULT_INTERVAL_S = 150.0


def new_histogram() -> HdrHistogram:
    return HdrHistogram(LOWEST_NS, HIGHEST_NS, SIGNIFICANT_FIGURES)


@dataclass(frozen=True)
class LatencySnapshot:
    """Immutable quantile view in nanoseconds; all zeros without samples."""
    count: int = 0
    min: float = 0
    p25: float = 0
    median: float = 0
    p75: float = 0
    max: float = 0

    @classmethod
    def from_histograms(cls, parts: list[HdrHistogram]) -> "LatencySnapshot":
        """Merge histograms into one view."""
        parts = [part for part in parts if part.get_total_count()]
        if not parts:
            return cls()
        merged = new_histogram()
        for part in parts:
            merged.add(part)
        return cls(
            count=merged.get_total_count(),
            min=min(part.get_min_value() for part in parts),
            p25=merged.get_value_at_percentile(25),
            median=merged.get_value_at_percentile(50),
            p75=merged.get_value_at_percentile(75),
            max=max(part.get_max_value() for part in parts),
        )


class DecayingHistogram:
    """Two HDR histograms covering the current and the previous interval."""

    def __init__(
        self,
        interval_s: float = DEFAULT_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval_s = interval_s
        self._clock = clock
        self._lock = threading.Lock()
        self._current = new_histogram()
        self._previous = new_histogram()
        self._interval_start = clock()

    def _rotate(self, now: float) -> None:
        elapsed = now - self._interval_start
        if elapsed < self.interval_s:
            return
        if elapsed >= 2 * self.interval_s:
            # Both intervals have passed
            self._previous.reset()
            self._current.reset()
        else:
            self._previous, self._current = self._current, self._previous
            self._current.reset()
        self._interval_start = now

    def record(self, value_ns: int) -> None:
        with self._lock:
            self._rotate(self._clock())
            self._current.record_value(min(value_ns, HIGHEST_NS))

    def snapshot(self) -> LatencySnapshot:
        with self._lock:
            self._rotate(self._clock())
            return LatencySnapshot.from_histograms([self._previous, self._current])


class LatencyRecorder:
    """Collects operation durations in nanoseconds."""

    def __init__(self, name: str, histogram: Optional[DecayingHistogram] = None):
        self.name = name
        self._histogram = histogram or DecayingHistogram()
        self._count = 0
        self._count_lock = threading.Lock()

    def record(self, duration_ns: int) -> None:
        """Add one duration sample."""
        with self._count_lock:
            self._count += 1
        self._histogram.record(max(int(duration_ns), 0))

    @property
    def count(self) -> int:
        """Samples recorded since creation, including those decayed away."""
        return self._count

    def snapshot(self) -> LatencySnapshot:
        return self._histogram.snapshot()
