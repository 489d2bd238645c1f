"""
Stop Conditions

Threshold predicates that end a running or looping query. Each run slot
owns its own StopConditionSet; fulfilled predicates stay fulfilled until
reset() so the answer never flips back within a slot.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from perfbench.errors import ConfigurationError
from perfbench.models.test_config import StopConditionsTemplate

logger = logging.getLogger(__name__)

TOTAL_TIME_MS = "total_time_ms"
ROWS_READ = "rows_read"
BYTES_READ_UNCOMPRESSED = "bytes_read_uncompressed"
ITERATIONS = "iterations"
MIN_TIME_NOT_CHANGING_FOR_MS = "min_time_not_changing_for_ms"
MAX_SPEED_NOT_CHANGING_FOR_MS = "max_speed_not_changing_for_ms"
AVERAGE_SPEED_NOT_CHANGING_FOR_MS = "average_speed_not_changing_for_ms"

CONDITION_KINDS = (
    TOTAL_TIME_MS,
    ROWS_READ,
    BYTES_READ_UNCOMPRESSED,
    ITERATIONS,
    MIN_TIME_NOT_CHANGING_FOR_MS,
    MAX_SPEED_NOT_CHANGING_FOR_MS,
    AVERAGE_SPEED_NOT_CHANGING_FOR_MS,
)


class StopCondition:
    """A single ``value >= threshold`` predicate."""

    __slots__ = ("kind", "threshold", "fulfilled")

    def __init__(self, kind: str, threshold: int):
        self.kind = kind
        self.threshold = threshold
        self.fulfilled = False

    def report(self, value: float) -> bool:
        """Update with the current reading; returns True when newly fulfilled."""
        if not self.fulfilled and value >= self.threshold:
            self.fulfilled = True
            return True
        return False

    def __repr__(self) -> str:
        return f"StopCondition({self.kind}>={self.threshold}, fulfilled={self.fulfilled})"


class ConditionGroup:
    """Predicates keyed by kind; at most one per kind."""

    def __init__(self, thresholds: Optional[Mapping[str, int]] = None):
        self._conditions: Dict[str, StopCondition] = {}
        for kind, threshold in (thresholds or {}).items():
            if kind not in CONDITION_KINDS:
                raise ConfigurationError(f"Unknown stop condition: {kind}")
            if threshold is None:
                continue
            if int(threshold) <= 0:
                raise ConfigurationError(f"Stop condition {kind} must be positive")
            self._conditions[kind] = StopCondition(kind, int(threshold))
        self.fulfilled_count = 0

    @property
    def initialized_count(self) -> int:
        return len(self._conditions)

    def thresholds(self) -> Dict[str, int]:
        return {kind: c.threshold for kind, c in self._conditions.items()}

    def report(self, kind: str, value: float) -> None:
        condition = self._conditions.get(kind)
        if condition is not None and condition.report(value):
            self.fulfilled_count += 1
            logger.debug(f"Stop condition fulfilled: {condition} (value={value})")

    def any_fulfilled(self) -> bool:
        return self.initialized_count > 0 and self.fulfilled_count > 0

    def all_fulfilled(self) -> bool:
        return self.initialized_count > 0 and self.fulfilled_count >= self.initialized_count

    def fulfilled_kinds(self) -> List[str]:
        return [kind for kind, c in self._conditions.items() if c.fulfilled]

    def reset(self) -> None:
        for condition in self._conditions.values():
            condition.fulfilled = False
        self.fulfilled_count = 0


class StopConditionSet:
    """
    Termination predicates of one run slot.

    ``any_of`` predicates end the slot as soon as one is met; ``all_of``
    predicates end it once every one of them is met. A set without any
    predicate is rejected at construction.
    """

    def __init__(
        self,
        any_of: Optional[Mapping[str, int]] = None,
        all_of: Optional[Mapping[str, int]] = None,
    ):
        self.any_of = ConditionGroup(any_of)
        self.all_of = ConditionGroup(all_of)
        if self.empty:
            raise ConfigurationError("No termination conditions were found in config")

    @classmethod
    def from_template(cls, template: StopConditionsTemplate) -> "StopConditionSet":
        return cls(
            any_of=template.any_of.configured(),
            all_of=template.all_of.configured(),
        )

    def clone(self) -> "StopConditionSet":
        """Fresh, reset copy with the same thresholds."""
        return StopConditionSet(
            any_of=self.any_of.thresholds(), all_of=self.all_of.thresholds()
        )

    @property
    def empty(self) -> bool:
        return not self.any_of.initialized_count and not self.all_of.initialized_count

    def _groups(self) -> Iterable[ConditionGroup]:
        return (self.any_of, self.all_of)

    def _report(self, kind: str, value: float) -> None:
        for group in self._groups():
            group.report(kind, value)

    def reset(self) -> None:
        for group in self._groups():
            group.reset()

    def report_rows_read(self, value: int) -> None:
        self._report(ROWS_READ, value)

    def report_bytes_read_uncompressed(self, value: int) -> None:
        self._report(BYTES_READ_UNCOMPRESSED, value)

    def report_iterations(self, value: int) -> None:
        self._report(ITERATIONS, value)

    def report_total_time(self, value_ms: float) -> None:
        self._report(TOTAL_TIME_MS, value_ms)

    def report_min_time_not_changing_for(self, value_ms: float) -> None:
        self._report(MIN_TIME_NOT_CHANGING_FOR_MS, value_ms)

    def report_max_speed_not_changing_for(self, value_ms: float) -> None:
        self._report(MAX_SPEED_NOT_CHANGING_FOR_MS, value_ms)

    def report_average_speed_not_changing_for(self, value_ms: float) -> None:
        self._report(AVERAGE_SPEED_NOT_CHANGING_FOR_MS, value_ms)

    def are_fulfilled(self) -> bool:
        return self.any_of.any_fulfilled() or self.all_of.all_fulfilled()

    def fulfilled_kinds(self) -> List[str]:
        kinds = self.any_of.fulfilled_kinds()
        if self.all_of.all_fulfilled():
            kinds.extend(k for k in self.all_of.fulfilled_kinds() if k not in kinds)
        return kinds
