"""
Data models for orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from perfbench.core.stats import StatsAccumulator
from perfbench.core.stop_conditions import StopConditionSet
from perfbench.core.substitutions import ResolvedQuery
from perfbench.models.test_config import ExecutionType, TestSpec


class RunState(str, Enum):
    """Lifecycle of one test specification inside the orchestrator."""

    IDLE = "IDLE"
    RESOLVING = "RESOLVING"
    EXECUTING = "EXECUTING"
    REPORTING = "REPORTING"
    DONE = "DONE"
    ABORTED = "ABORTED"


@dataclass
class RunSlot:
    """One (resolved query, repetition) execution unit and its own state."""

    index: int  # creation (= execution) order
    query_index: int
    query: ResolvedQuery
    repetition: int  # 1-based
    stop_conditions: StopConditionSet
    stats: StatsAccumulator
    invoked: bool = False
    was_cancelled: bool = False

    @property
    def ready(self) -> bool:
        return self.stats.ready

    @property
    def exception(self) -> Optional[str]:
        return self.stats.exception


@dataclass
class ResolvedTest:
    """A validated test specification with its run slots allocated."""

    spec: TestSpec
    name: str
    queries: List[ResolvedQuery]
    slots: List[RunSlot]
    backend_settings: Dict[str, str] = field(default_factory=dict)
    state: RunState = RunState.IDLE
    skipped_reason: Optional[str] = None
    aborted: bool = False  # interrupted while executing

    @property
    def execution_type(self) -> ExecutionType:
        return self.spec.execution_type

    @property
    def main_metric(self) -> str:
        return self.spec.effective_main_metric

    @property
    def metrics(self) -> List[str]:
        return list(self.spec.metrics)

    def slots_in_report_order(self) -> List[RunSlot]:
        return sorted(self.slots, key=lambda s: (s.query_index, s.repetition))

    def ready_slots(self) -> List[RunSlot]:
        return [slot for slot in self.slots_in_report_order() if slot.ready]
