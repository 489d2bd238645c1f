"""
Global pytest configuration and fixtures for perfbench tests.

This module provides:
- A manual clock so stopwatch readings are deterministic
- A scripted in-memory execution backend (no database needed)
- Helpers to build TestSpec objects from plain dicts
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Callable, Dict, List, Mapping, Optional, Set, Tuple

import pytest

from perfbench.connectors.base import BackendError, QueryStream
from perfbench.models.metrics import ProgressEvent
from perfbench.models.test_config import TestSpec


class ManualClock:
    """Callable clock advanced explicitly by tests (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedStream(QueryStream):
    """
    Yields the scripted (rows, bytes) events, advancing the clock before each.

    A None entry is sent as a heartbeat.
    """

    def __init__(
        self,
        query: str,
        clock: ManualClock,
        events: List[Optional[Tuple[int, int]]],
        step: float,
        error: Optional[str] = None,
    ):
        super().__init__(query)
        self._clock = clock
        self._script = events
        self._step = step
        self._error = error
        self.closed = False

    async def _events(self) -> AsyncGenerator[ProgressEvent, None]:
        try:
            for item in self._script:
                self._clock.advance(self._step)
                if item is None:
                    yield ProgressEvent(heartbeat=True)
                    continue
                rows, nbytes = item
                yield ProgressEvent(rows=rows, bytes=nbytes)
            if self._error is not None:
                raise BackendError(self._error)
        finally:
            self.closed = True


class ScriptedBackend:
    """
    In-memory execution backend.

    events: query text -> list of (rows, bytes) progress events, None for a heartbeat
    failures: (query text, 1-based invocation number of that query) pairs that fail
    on_stream: hook called as on_stream(query, invocation) before a stream is returned
    """

    def __init__(
        self,
        clock: ManualClock,
        events: Optional[Mapping[str, List[Optional[Tuple[int, int]]]]] = None,
        default_events: Optional[List[Optional[Tuple[int, int]]]] = None,
        step: float = 0.01,
        failures: Optional[Set[Tuple[str, int]]] = None,
        tables: Optional[Set[str]] = None,
    ):
        self.clock = clock
        self.events: Dict[str, List[Optional[Tuple[int, int]]]] = dict(events or {})
        self.default_events = default_events if default_events is not None else [(10, 100)]
        self.step = step
        self.failures = set(failures or ())
        self.tables = set(tables or ())
        self.on_stream: Optional[Callable[[str, int], None]] = None

        self.invocations: List[str] = []
        self.streams: List[ScriptedStream] = []
        self.applied_settings: List[Dict[str, str]] = []
        self.reset_calls = 0
        self.connected = False
        self.fail_settings = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def server_version(self) -> str:
        return "16.2.0"

    async def apply_settings(self, values: Mapping[str, str]) -> None:
        if self.fail_settings:
            raise BackendError("unrecognized configuration parameter")
        self.applied_settings.append(dict(values))

    async def reset_settings(self) -> None:
        self.reset_calls += 1

    async def table_exists(self, table: str) -> bool:
        return table in self.tables

    def stream(self, query: str) -> ScriptedStream:
        self.invocations.append(query)
        invocation = self.invocations.count(query)
        if self.on_stream is not None:
            self.on_stream(query, invocation)
        error = "query failed" if (query, invocation) in self.failures else None
        stream = ScriptedStream(
            query,
            self.clock,
            self.events.get(query, self.default_events),
            self.step,
            error=error,
        )
        self.streams.append(stream)
        return stream


def make_spec(**overrides: Any) -> TestSpec:
    """Build a TestSpec from keyword overrides on a minimal valid once-mode spec."""
    data: Dict[str, Any] = {
        "name": "test",
        "type": "once",
        "query": "SELECT 1",
        "stop_conditions": {"total_time_ms": 60000},
        "metrics": ["max_rows_per_second"],
    }
    data.update(overrides)
    return TestSpec.model_validate(data)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def backend(clock: ManualClock) -> ScriptedBackend:
    return ScriptedBackend(clock)


@pytest.fixture
def spec_factory() -> Callable[..., TestSpec]:
    return make_spec
