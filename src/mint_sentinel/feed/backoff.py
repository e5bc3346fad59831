"""Exponential backoff for poll loops."""

from __future__ import annotations


class Backoff:
    """Doubling delay between ``floor`` and ``ceiling`` seconds.

    Each ``failure()`` doubles the delay (capped at the ceiling) and returns
    it; ``success()`` resets to the floor.
    """

    def __init__(self, floor: float, ceiling: float) -> None:
        if floor < 0 or ceiling < floor:
            raise ValueError("expected 0 <= floor <= ceiling")
        self.floor = floor
        self.ceiling = ceiling
        self._delay = floor

    @property
    def delay(self) -> float:
        return self._delay

    def failure(self) -> float:
        self._delay = min(self.ceiling, max(self._delay * 2, self.floor))
        return self._delay

    def success(self) -> float:
        self._delay = self.floor
        return self._delay

    reset = success
