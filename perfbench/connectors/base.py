"""
Execution Backend Interface

The orchestrator talks to the data-serving engine only through these
types: a backend that opens query streams, and a stream that yields
progress events and accepts a cooperative cancel.
"""

from abc import ABC, abstractmethod
from typing import AsyncGenerator, AsyncIterator, Mapping, Optional, Protocol

from perfbench.models.metrics import ProgressEvent


class BackendError(RuntimeError):
    """Query failure or protocol/connection error reported by a backend."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class QueryStream(ABC):
    """
    Progress events of one query invocation.

    cancel() is advisory: the stream stops producing events at its next
    opportunity and the consumer may stop iterating right away.
    """

    def __init__(self, query: str):
        self.query = query
        self.cancelled = False
        self._iterator: Optional[AsyncGenerator[ProgressEvent, None]] = None

    def cancel(self) -> None:
        self.cancelled = True

    @abstractmethod
    def _events(self) -> AsyncGenerator[ProgressEvent, None]:
        """Yield progress events until the query completes."""

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        if self._iterator is None:
            self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncGenerator[ProgressEvent, None]:
        events = self._events()
        try:
            async for event in events:
                yield event
                if self.cancelled:
                    break
        finally:
            await events.aclose()

    async def aclose(self) -> None:
        """Stop the stream and release what it holds (cursor, transaction)."""
        self.cancelled = True
        if self._iterator is not None:
            await self._iterator.aclose()


class ExecutionBackend(Protocol):
    """Live data-serving engine the benchmarks run against."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def server_version(self) -> str: ...

    async def apply_settings(self, settings: Mapping[str, str]) -> None: ...

    async def reset_settings(self) -> None: ...

    async def table_exists(self, table: str) -> bool: ...

    def stream(self, query: str) -> QueryStream: ...
