"""
Metrics Models

Defines Pydantic models for progress events and the final benchmark report.
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProgressEvent(BaseModel):
    """
    Rows/bytes processed since the previous event of the same query.

    A heartbeat carries no data; it is sent while the backend is still
    waiting for rows so elapsed-time stop conditions and cancellation are
    checked during long silent stretches.
    """

    rows: int = Field(0, ge=0, description="Rows processed (delta)")
    bytes: int = Field(0, ge=0, description="Bytes processed (delta)")
    heartbeat: bool = Field(False, description="Timer tick without data")


def _finite_or_none(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _finite_or_none(v) for k, v in value.items()}
    return value


class RunRecord(BaseModel):
    """Outcome of one run slot (resolved query x repetition)."""

    query: str = Field(..., description="Resolved query text")
    repetition: int = Field(..., ge=1, description="1-based repetition number")
    exception: Optional[str] = Field(None, description="Backend error text")
    parameters: Optional[Dict[str, str]] = Field(
        None, description="Substitution values used for this query"
    )
    metrics: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Flat payload: metric values sit next to the run's identity fields."""
        payload: Dict[str, Any] = {"query": self.query}
        if self.exception is not None:
            payload["exception"] = self.exception
        if self.parameters:
            payload["parameters"] = dict(self.parameters)
        for name, value in self.metrics.items():
            payload[name] = _finite_or_none(value)
        return payload


class TestReport(BaseModel):
    """
    Report for one test specification.

    Only run slots that became ready are listed in ``runs``.
    """

    __test__ = False  # not a pytest test class

    hostname: str
    num_cores: Optional[int] = None
    num_threads: Optional[int] = None
    ram: Optional[int] = None
    server_version: str = ""
    time: str
    test_name: str
    main_metric: str
    parameters: Optional[Dict[str, List[str]]] = None
    runs: List[RunRecord] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "hostname": self.hostname,
            "num_cores": self.num_cores,
            "num_threads": self.num_threads,
            "ram": self.ram,
            "server_version": self.server_version,
            "time": self.time,
            "test_name": self.test_name,
            "main_metric": self.main_metric,
        }
        if self.parameters:
            payload["parameters"] = {k: list(v) for k, v in self.parameters.items()}
        payload["runs"] = [run.to_dict() for run in self.runs]
        return payload
