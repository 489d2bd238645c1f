"""
Tests for test preconditions.
"""

from unittest.mock import patch

import pytest

from perfbench.core import preconditions
from perfbench.core.preconditions import check_preconditions, flush_disk_cache
from perfbench.errors import PreconditionFailed

pytestmark = pytest.mark.asyncio


async def test_no_preconditions(backend, spec_factory) -> None:
    await check_preconditions(spec_factory(), backend)


async def test_ram_size(backend, spec_factory) -> None:
    spec = spec_factory(preconditions={"ram_size": 2048})

    with patch.object(preconditions, "total_ram_bytes", return_value=4096):
        await check_preconditions(spec, backend)

    with patch.object(preconditions, "total_ram_bytes", return_value=1024):
        with pytest.raises(PreconditionFailed, match="Not enough RAM"):
            await check_preconditions(spec, backend)


async def test_table_exists(backend, spec_factory) -> None:
    backend.tables = {"hits"}

    await check_preconditions(spec_factory(preconditions={"table_exists": ["hits"]}), backend)

    with pytest.raises(PreconditionFailed) as exc_info:
        await check_preconditions(
            spec_factory(name="t", preconditions={"table_exists": ["hits", "visits"]}), backend
        )
    assert exc_info.value.test_name == "t"
    assert exc_info.value.reason == "Table visits doesn't exist"


async def test_flush_disk_cache_command() -> None:
    await flush_disk_cache("true")

    with pytest.raises(RuntimeError, match="Failed to flush disk cache"):
        await flush_disk_cache("echo nope >&2; exit 3")


async def test_failed_flush_is_a_precondition_failure(backend, spec_factory) -> None:
    spec = spec_factory(preconditions={"flush_disk_cache": True})

    with pytest.raises(PreconditionFailed, match="exit 3"):
        await check_preconditions(spec, backend, flush_command="exit 3")
