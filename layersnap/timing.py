"""Accumulate wall-clock time spent in named categories."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

Clock = Callable[[], float]

_MICROSECOND = timedelta(microseconds=1)
_NS_PER_SECOND = 1_000_000_000


@dataclass(frozen=True)
class Timer:
    """A running timer for one category, started at a clock reading in seconds."""

    category: str
    start_time: float


class TimedRun:
    """A running store of how long is spent in each category."""

    def __init__(
        self,
        categories: dict[str, timedelta] | None = None,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.categories: dict[str, timedelta] = (
            dict(categories) if categories is not None else {}
        )
        self._clock = clock
        self._lock = threading.Lock()

    def stop(self, timer: Timer) -> None:
        """Stop the timer and add the elapsed time to its category."""
        stopped = self._clock()
        elapsed = timedelta(seconds=stopped - timer.start_time)
        with self._lock:
            self.categories[timer.category] = (
                self.categories.get(timer.category, timedelta()) + elapsed
            )

    def summary(self) -> str:
        """One "category: duration" line per category, sorted by category."""
        with self._lock:
            items = sorted(self.categories.items())
        return "".join(f"{name}: {format_duration(spent)}\n" for name, spent in items)

    def to_json(self) -> str:
        """The categories as a JSON object of nanosecond totals."""
        with self._lock:
            totals = {
                name: (spent // _MICROSECOND) * 1000
                for name, spent in self.categories.items()
            }
        return json.dumps(totals, sort_keys=True, separators=(",", ":"))


DEFAULT_RUN = TimedRun()


def start(category: str) -> Timer:
    """Start a new timer for ``category``."""
    return Timer(category=category, start_time=time.perf_counter())


def summary() -> str:
    """Summary of the default run."""
    return DEFAULT_RUN.summary()


def to_json() -> str:
    """JSON of the default run."""
    return DEFAULT_RUN.to_json()


def _with_fraction(value: int, precision: int) -> str:
    whole, rest = divmod(value, 10**precision)
    digits = f"{rest:0{precision}d}".rstrip("0")
    return f"{whole}.{digits}" if digits else str(whole)


def format_duration(delta: timedelta) -> str:
    """Render a duration as e.g. "1h2m3.5s", "1.5ms" or "0s"."""
    sign = "-" if delta < timedelta() else ""
    nanos = (abs(delta) // _MICROSECOND) * 1000
    if nanos == 0:
        return "0s"
    if nanos < _NS_PER_SECOND:
        if nanos < 1000:
            return f"{sign}{nanos}ns"
        if nanos < 1_000_000:
            return f"{sign}{_with_fraction(nanos, 3)}µs"
        return f"{sign}{_with_fraction(nanos, 6)}ms"

    text = _with_fraction(nanos % (60 * _NS_PER_SECOND), 9) + "s"
    minutes = nanos // (60 * _NS_PER_SECOND)
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text