"""
Run Slot Statistics

Running counters, speed tracking and a bounded latency sample for one run
slot, plus the reduction of those into reportable metric values.
"""

import logging
import math
import random
import time
from typing import Any, Dict, List, Optional

from perfbench.core.stopwatch import Clock, Stopwatch

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_COUNT = 8192

QUANTILE_LEVELS = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 0.99, 0.999, 0.9999)


def quantile_key(level: float) -> str:
    """Report key for a quantile level: 0.5 -> "0.5", 0.9999 -> "0.9999"."""
    return format(level, "g")


class ReservoirSampler:
    """
    Fixed-capacity uniform sample of a stream (Algorithm R).

    Quantiles are linearly interpolated between the two nearest ranked
    samples.
    """

    def __init__(self, capacity: int = DEFAULT_SAMPLE_COUNT, rng: Optional[random.Random] = None):
        if capacity < 1:
            raise ValueError("Reservoir capacity must be >= 1")
        self.capacity = capacity
        self._rng = rng or random.Random()
        self._samples: List[float] = []
        self._total_values = 0
        self._sorted = True

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def total_values(self) -> int:
        """Number of values offered, including those not kept."""
        return self._total_values

    def insert(self, value: float) -> None:
        self._total_values += 1
        if len(self._samples) < self.capacity:
            self._samples.append(value)
        else:
            j = self._rng.randrange(self._total_values)
            if j >= self.capacity:
                return
            self._samples[j] = value
        self._sorted = False

    def clear(self) -> None:
        self._samples.clear()
        self._total_values = 0
        self._sorted = True

    def quantile_interpolated(self, level: float) -> float:
        """Interpolated quantile; NaN when nothing was sampled."""
        if not self._samples:
            return float("nan")
        if not self._sorted:
            self._samples.sort()
            self._sorted = True

        n = len(self._samples)
        index = max(0.0, min(float(n - 1), level * (n - 1)))
        left = int(math.floor(index))
        right = left + 1
        if right == n:
            return self._samples[left]
        left_coef = right - index
        right_coef = index - left
        return self._samples[left] * left_coef + self._samples[right] * right_coef


class StatsAccumulator:
    """
    Statistics of one run slot.

    Call add() once per progress event and update_query_info() at the
    natural end of every invocation that was not cancelled.
    """

    def __init__(
        self,
        avg_rows_speed_precision: float = 0.001,
        avg_bytes_speed_precision: float = 0.001,
        reservoir_capacity: int = DEFAULT_SAMPLE_COUNT,
        clock: Clock = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.avg_rows_speed_precision = avg_rows_speed_precision
        self.avg_bytes_speed_precision = avg_bytes_speed_precision
        self.sampler = ReservoirSampler(reservoir_capacity, rng=rng)

        self.watch = Stopwatch(clock)
        self.watch_per_query = Stopwatch(clock)
        self.min_time_watch = Stopwatch(clock)
        self.max_rows_speed_watch = Stopwatch(clock)
        self.max_bytes_speed_watch = Stopwatch(clock)
        self.avg_rows_speed_watch = Stopwatch(clock)
        self.avg_bytes_speed_watch = Stopwatch(clock)

        self.clear()

    def clear(self) -> None:
        """Back to start-of-slot state; restarts every stopwatch."""
        for watch in (
            self.watch,
            self.watch_per_query,
            self.min_time_watch,
            self.max_rows_speed_watch,
            self.max_bytes_speed_watch,
            self.avg_rows_speed_watch,
            self.avg_bytes_speed_watch,
        ):
            watch.restart()

        self.sampler.clear()

        self.queries = 0
        self.total_rows_read = 0
        self.total_bytes_read = 0
        self.last_query_rows_read = 0
        self.last_query_bytes_read = 0
        self.last_query_was_cancelled = False

        self.min_time_ms = math.inf
        self.total_time = 0.0

        self.max_rows_speed = 0.0
        self.max_bytes_speed = 0.0

        self.avg_rows_speed_value = 0.0
        self.avg_rows_speed_first = 0.0
        self.number_of_rows_speed_info_batches = 0
        self.avg_bytes_speed_value = 0.0
        self.avg_bytes_speed_first = 0.0
        self.number_of_bytes_speed_info_batches = 0

        self.exception: Optional[str] = None
        self.ready = False

    def start_query(self) -> None:
        """Per-invocation reset before a query is sent."""
        self.watch_per_query.restart()
        self.last_query_was_cancelled = False
        self.last_query_rows_read = 0
        self.last_query_bytes_read = 0

    def add(self, rows_read_inc: int, bytes_read_inc: int) -> None:
        """Record one progress event and re-derive the speed metrics."""
        self.total_rows_read += rows_read_inc
        self.total_bytes_read += bytes_read_inc
        self.last_query_rows_read += rows_read_inc
        self.last_query_bytes_read += bytes_read_inc

        elapsed = self.watch_per_query.elapsed_seconds()
        if elapsed <= 0:
            return

        new_rows_speed = self.last_query_rows_read / elapsed
        new_bytes_speed = self.last_query_bytes_read / elapsed

        if new_rows_speed > self.max_rows_speed:
            self.max_rows_speed = new_rows_speed
            self.max_rows_speed_watch.restart()
        if new_bytes_speed > self.max_bytes_speed:
            self.max_bytes_speed = new_bytes_speed
            self.max_bytes_speed_watch.restart()

        self._update_average_rows_speed(new_rows_speed)
        self._update_average_bytes_speed(new_bytes_speed)

    @staticmethod
    def _changed(value: float, anchor: float, precision: float) -> bool:
        # Relative tolerance against the value at the last significant change.
        return abs(value - anchor) > precision * abs(anchor)

    def _update_average_rows_speed(self, new_speed: float) -> None:
        n = self.number_of_rows_speed_info_batches
        self.avg_rows_speed_value = (self.avg_rows_speed_value * n + new_speed) / (n + 1)
        self.number_of_rows_speed_info_batches = n + 1
        if self._changed(
            self.avg_rows_speed_value, self.avg_rows_speed_first, self.avg_rows_speed_precision
        ):
            self.avg_rows_speed_first = self.avg_rows_speed_value
            self.avg_rows_speed_watch.restart()

    def _update_average_bytes_speed(self, new_speed: float) -> None:
        n = self.number_of_bytes_speed_info_batches
        self.avg_bytes_speed_value = (self.avg_bytes_speed_value * n + new_speed) / (n + 1)
        self.number_of_bytes_speed_info_batches = n + 1
        if self._changed(
            self.avg_bytes_speed_value, self.avg_bytes_speed_first, self.avg_bytes_speed_precision
        ):
            self.avg_bytes_speed_first = self.avg_bytes_speed_value
            self.avg_bytes_speed_watch.restart()

    def update_query_info(self) -> None:
        """Finalize a completed (not cancelled) invocation."""
        self.queries += 1
        elapsed = self.watch_per_query.elapsed_seconds()
        self.sampler.insert(elapsed)

        elapsed_ms = elapsed * 1000.0
        if elapsed_ms < self.min_time_ms:
            self.min_time_ms = elapsed_ms
            self.min_time_watch.restart()

    def set_total_time(self) -> None:
        self.total_time = self.watch.elapsed_seconds()

    # Readings fed to the stop conditions (milliseconds).

    def total_elapsed_ms(self) -> int:
        return self.watch.elapsed_ms()

    def min_time_unchanged_ms(self) -> int:
        return self.min_time_watch.elapsed_ms()

    def max_speed_unchanged_ms(self) -> int:
        return self.max_rows_speed_watch.elapsed_ms()

    def avg_speed_unchanged_ms(self) -> int:
        return self.avg_rows_speed_watch.elapsed_ms()

    # Derived values.

    def get_quantile(self, level: float) -> float:
        return self.sampler.quantile_interpolated(level)

    def quantiles(self) -> Dict[str, float]:
        return {quantile_key(level): self.get_quantile(level) for level in QUANTILE_LEVELS}

    def _per_second(self, quantity: float) -> float:
        if self.total_time <= 0:
            return float("nan")
        return quantity / self.total_time

    def metric_value(self, name: str) -> Any:
        """Numeric value of a metric as it appears in the structured report."""
        if name == "min_time":
            return self.min_time_ms / 1000.0
        if name == "quantiles":
            return self.quantiles()
        if name == "total_time":
            return self.total_time
        if name == "queries_per_second":
            return self._per_second(self.queries)
        if name == "rows_per_second":
            return self._per_second(self.total_rows_read)
        if name == "bytes_per_second":
            return self._per_second(self.total_bytes_read)
        if name == "max_rows_per_second":
            return self.max_rows_speed
        if name == "max_bytes_per_second":
            return self.max_bytes_speed
        if name == "avg_rows_per_second":
            return self.avg_rows_speed_value
        if name == "avg_bytes_per_second":
            return self.avg_bytes_speed_value
        raise ValueError(f"Unknown metric: {name}")

    def get_statistic_by_name(self, name: str) -> str:
        """Compact text form of a metric, used by lite output."""
        if name == "min_time":
            return f"{self.min_time_ms:.3f}ms"
        if name == "quantiles":
            return "\n" + "".join(
                f"    {key}: {value:.6f}\n" for key, value in self.quantiles().items()
            )
        if name == "total_time":
            return f"{self.total_time:.6f}s"
        return f"{self.metric_value(name):.6f}"

    def summary(self) -> Dict[str, Any]:
        """Debug snapshot of the counters."""
        return {
            "queries": self.queries,
            "total_rows_read": self.total_rows_read,
            "total_bytes_read": self.total_bytes_read,
            "min_time_ms": self.min_time_ms,
            "total_time": self.total_time,
            "max_rows_speed": self.max_rows_speed,
            "avg_rows_speed": self.avg_rows_speed_value,
            "samples": len(self.sampler),
            "exception": self.exception,
            "ready": self.ready,
        }
