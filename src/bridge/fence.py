"""Session fence used to reject events that belong to an earlier session."""

from __future__ import annotations

import time
from collections.abc import Callable

Clock = Callable[[], float]


def wall_clock_ms() -> float:
    return time.time() * 1000.0


class SessionFence:
    """Monotonic marker refreshed on every connect attempt and disconnect."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or wall_clock_ms
        self._mark = self._clock()

    @property
    def value(self) -> float:
        return self._mark

    def mark(self) -> float:
        # Never move backwards, even if the wall clock does.
        self._mark = max(self._mark, self._clock())
        return self._mark

    def is_stale(self, timestamp: float) -> bool:
        return timestamp < self._mark
