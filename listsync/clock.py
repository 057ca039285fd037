"""Time sources for event timestamps.

Every event is stamped through an injected Clock so replays and tests can
run against a virtual timeline instead of the wall clock.
"""

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of millisecond timestamps."""

    @abstractmethod
    def now(self) -> int:
        """Return the current time in milliseconds."""


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> int:
        return int(time.time() * 1000)


class VirtualClock(Clock):
    """Manually driven clock for tests and simulations.

    Args:
        start: Initial timestamp in milliseconds.
        step: Amount to advance after every read (0 keeps time frozen).
    """

    def __init__(self, start: int = 0, step: int = 0):
        self._current = start
        self._step = step

    def now(self) -> int:
        current = self._current
        self._current += self._step
        return current

    def advance(self, ms: int) -> int:
        """Move time forward and return the new value."""
        if ms < 0:
            raise ValueError("VirtualClock cannot move backwards")
        self._current += ms
        return self._current

    def set(self, ms: int) -> None:
        self._current = ms
