"""
Test preconditions.

Checks run before a test: optional disk-cache flush, minimum RAM and
required tables. A failed check skips the test, it does not stop the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import psutil

from perfbench.config import settings
from perfbench.connectors.base import BackendError, ExecutionBackend
from perfbench.errors import PreconditionFailed
from perfbench.models.test_config import TestSpec

logger = logging.getLogger(__name__)


def total_ram_bytes() -> int:
    return int(psutil.virtual_memory().total)


async def flush_disk_cache(command: Optional[str] = None) -> None:
    """Run the cache-flush shell command; non-zero exit is a failure."""
    command = command or settings.FLUSH_DISK_CACHE_COMMAND
    logger.info("Flushing disk cache...")
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = (stderr or b"").decode("utf-8", errors="replace").strip()
        raise RuntimeError(
            f"Failed to flush disk cache (exit {proc.returncode})"
            + (f": {detail}" if detail else "")
        )
    logger.info("Flushed.")


async def check_preconditions(
    spec: TestSpec,
    backend: ExecutionBackend,
    *,
    flush_command: Optional[str] = None,
) -> None:
    """
    Verify a test's preconditions.

    Raises:
        PreconditionFailed: the test must be skipped
    """
    name = spec.name or "<unnamed>"
    pre = spec.preconditions
    if pre.empty:
        return

    if pre.flush_disk_cache:
        try:
            await flush_disk_cache(flush_command)
        except (RuntimeError, OSError) as e:
            raise PreconditionFailed(name, str(e)) from e

    if pre.ram_size is not None:
        actual = total_ram_bytes()
        if pre.ram_size > actual:
            raise PreconditionFailed(
                name, f"Not enough RAM: need = {pre.ram_size}, present = {actual}"
            )

    for table in pre.table_exists:
        try:
            exists = await backend.table_exists(table)
        except BackendError as e:
            raise PreconditionFailed(name, f"Cannot check table {table}: {e}") from e
        if not exists:
            raise PreconditionFailed(name, f"Table {table} doesn't exist")
