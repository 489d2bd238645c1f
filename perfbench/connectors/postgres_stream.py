"""
Postgres Streaming Backend

Runs benchmark queries over a single asyncpg connection. Row-returning
queries are read through a server-side cursor in batches; every batch is
reported as one progress event, so stop conditions are checked while the
query is still running. While a fetch is outstanding the stream also emits
a heartbeat event every tick, so time-based stop conditions and
cancellation are honoured even when the server sends nothing for a while.
"""

import asyncio
import logging
import re
from typing import Any, AsyncGenerator, Iterable, Mapping, Optional

import asyncpg
from asyncpg import Connection
from asyncpg.exceptions import (
    CannotConnectNowError,
    TooManyConnectionsError,
)

from perfbench.config import settings
from perfbench.connectors.base import BackendError, QueryStream
from perfbench.models.metrics import ProgressEvent

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_STATUS_ROWS_RE = re.compile(r"(\d+)\s*$")


def _value_bytes(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (bytes, bytearray, memoryview)):
        return len(value)
    return len(str(value).encode("utf-8"))


def estimate_payload_bytes(records: Iterable[Any]) -> int:
    """Approximate decoded size of a batch of records."""
    return sum(_value_bytes(value) for record in records for value in record)


def rows_from_status(status: Optional[str]) -> int:
    """Affected row count from a command tag such as ``INSERT 0 5``."""
    if not status:
        return 0
    m = _STATUS_ROWS_RE.search(status)
    return int(m.group(1)) if m else 0


async def _discard(task: "asyncio.Future[Any]") -> None:
    """Cancel a pending fetch and wait until the driver has given it up."""
    if not task.done():
        task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class PostgresQueryStream(QueryStream):
    """One query invocation on a Postgres connection."""

    def __init__(
        self,
        conn: Connection,
        query: str,
        batch_rows: int,
        tick_seconds: float = 0.1,
    ):
        super().__init__(query)
        self._conn = conn
        self._batch_rows = batch_rows
        self._tick_seconds = tick_seconds

    async def _settled(self, task: "asyncio.Future[Any]") -> bool:
        done, _ = await asyncio.wait({task}, timeout=self._tick_seconds)
        return bool(done)

    async def _events(self) -> AsyncGenerator[ProgressEvent, None]:
        try:
            stmt = await self._conn.prepare(self.query)

            if not stmt.get_attributes():
                # Statement without a result set (DDL/DML): one event at the end.
                task = asyncio.ensure_future(stmt.fetch())
                try:
                    while not self.cancelled and not await self._settled(task):
                        yield ProgressEvent(heartbeat=True)
                finally:
                    await _discard(task)
                if self.cancelled:
                    return
                task.result()
                yield ProgressEvent(rows=rows_from_status(stmt.get_statusmsg()), bytes=0)
                return

            async with self._conn.transaction():
                cursor = await stmt.cursor()
                while not self.cancelled:
                    task = asyncio.ensure_future(cursor.fetch(self._batch_rows))
                    try:
                        while not self.cancelled and not await self._settled(task):
                            yield ProgressEvent(heartbeat=True)
                    finally:
                        await _discard(task)
                    if self.cancelled:
                        break

                    records = task.result()
                    if not records:
                        break
                    yield ProgressEvent(
                        rows=len(records), bytes=estimate_payload_bytes(records)
                    )
                    if len(records) < self._batch_rows:
                        break
        except _DRIVER_ERRORS as e:
            raise BackendError(f"{type(e).__name__}: {e}", cause=e) from e


class PostgresBackend:
    """
    Postgres execution backend with retrying connection setup.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        ssl: bool = False,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        command_timeout: Optional[float] = None,
        batch_rows: int = 1000,
        tick_seconds: float = 0.1,
    ):
        """
        Initialize Postgres backend.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Username
            password: Password
            ssl: Require a TLS connection
            max_retries: Max connect attempts for transient failures
            retry_delay: Delay between retries in seconds
            command_timeout: Per-statement timeout in seconds (None = no limit)
            batch_rows: Rows fetched per progress event
            tick_seconds: Heartbeat interval while a fetch is outstanding
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.ssl = ssl
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout
        self.batch_rows = batch_rows
        self.tick_seconds = tick_seconds

        self._conn: Optional[Connection] = None

        logger.info(f"Postgres backend configured: {user}@{host}:{port}/{database}")

    @classmethod
    def from_settings(cls, **overrides: Any) -> "PostgresBackend":
        """Build from process settings; explicit keyword overrides win."""
        params: dict[str, Any] = {
            "host": settings.POSTGRES_HOST,
            "port": settings.POSTGRES_PORT,
            "database": settings.POSTGRES_DATABASE,
            "user": settings.POSTGRES_USER,
            "password": settings.POSTGRES_PASSWORD,
            "ssl": settings.POSTGRES_SSL,
            "max_retries": settings.POSTGRES_CONNECT_RETRIES,
            "retry_delay": settings.POSTGRES_RETRY_DELAY_SECONDS,
            "command_timeout": settings.POSTGRES_COMMAND_TIMEOUT,
            "batch_rows": settings.STREAM_BATCH_ROWS,
            "tick_seconds": settings.PROGRESS_TICK_SECONDS,
        }
        params.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**params)

    async def connect(self) -> None:
        if self._conn is not None:
            return

        for attempt in range(self.max_retries):
            try:
                self._conn = await asyncpg.connect(
                    host=self.host,
                    port=self.port,
                    database=self.database,
                    user=self.user,
                    password=self.password,
                    ssl="require" if self.ssl else None,
                    command_timeout=self.command_timeout,
                )
                logger.info(f"Connected to Postgres at {self.host}:{self.port}")
                return

            except (CannotConnectNowError, TooManyConnectionsError, OSError) as e:
                if attempt < self.max_retries - 1:
                    logger.warning(f"Connect attempt {attempt + 1} failed, retrying: {e}")
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(f"Failed to connect after {self.max_retries} attempts")
                    raise BackendError(f"Cannot connect to Postgres: {e}", cause=e) from e
            except _DRIVER_ERRORS as e:
                raise BackendError(f"Cannot connect to Postgres: {e}", cause=e) from e

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> Connection:
        if self._conn is None:
            raise BackendError("Backend is not connected")
        return self._conn

    async def server_version(self) -> str:
        version = self._connection().get_server_version()
        return f"{version.major}.{version.minor}.{version.micro}"

    async def apply_settings(self, values: Mapping[str, str]) -> None:
        """Set session-level parameters for the following queries."""
        conn = self._connection()
        for name, value in values.items():
            try:
                await conn.execute("SELECT set_config($1, $2, false)", name, value)
            except _DRIVER_ERRORS as e:
                raise BackendError(f"Cannot apply setting {name}={value}: {e}", cause=e) from e
            logger.debug(f"Applied setting {name}={value}")

    async def reset_settings(self) -> None:
        try:
            await self._connection().execute("RESET ALL")
        except _DRIVER_ERRORS as e:
            raise BackendError(f"Cannot reset settings: {e}", cause=e) from e

    async def table_exists(self, table: str) -> bool:
        try:
            return bool(
                await self._connection().fetchval(
                    "SELECT to_regclass($1) IS NOT NULL", table
                )
            )
        except _DRIVER_ERRORS as e:
            raise BackendError(f"Cannot check table {table}: {e}", cause=e) from e

    def stream(self, query: str) -> PostgresQueryStream:
        return PostgresQueryStream(
            self._connection(), query, self.batch_rows, tick_seconds=self.tick_seconds
        )
