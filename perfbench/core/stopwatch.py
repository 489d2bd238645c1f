"""
Monotonic stopwatch.
"""

import time
from typing import Callable

Clock = Callable[[], float]


class Stopwatch:
    """Measures time since the last restart using a monotonic clock (seconds)."""

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._started = clock()

    def restart(self) -> None:
        self._started = self._clock()

    def elapsed_seconds(self) -> float:
        return max(0.0, self._clock() - self._started)

    def elapsed_ms(self) -> int:
        return int(self.elapsed_seconds() * 1000)
