"""Clock collaborators: one timestamp read at the start of each operation."""

from __future__ import annotations

import time


class SystemClock:
    """Wall-clock seconds since the epoch."""

    def __call__(self) -> int:
        return int(time.time())


class ManualClock:
    """
    Settable clock for simulations and tests.

    Time never moves backwards; ``set`` to an earlier value raises.
    """

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def __call__(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError(f"clock cannot move backwards: {timestamp} < {self._now}")
        self._now = timestamp
        return self._now
