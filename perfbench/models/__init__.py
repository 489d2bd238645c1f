"""
Data models for perfbench.

This package contains Pydantic models for:
- Test specifications (queries, substitutions, stop conditions, metrics)
- Progress events and reports
"""

from perfbench.models.test_config import (
    ExecutionType,
    LOOP_METRICS,
    ONCE_METRICS,
    StopConditionsConfig,
    StopConditionsTemplate,
    BackendSettings,
    Substitution,
    Preconditions,
    TestSpec,
    metrics_for,
)

from perfbench.models.metrics import (
    ProgressEvent,
    RunRecord,
    TestReport,
)

__all__ = [
    # test_config
    "ExecutionType",
    "LOOP_METRICS",
    "ONCE_METRICS",
    "StopConditionsConfig",
    "StopConditionsTemplate",
    "BackendSettings",
    "Substitution",
    "Preconditions",
    "TestSpec",
    "metrics_for",
    # metrics
    "ProgressEvent",
    "RunRecord",
    "TestReport",
]
