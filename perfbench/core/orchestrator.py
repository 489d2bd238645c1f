"""
Run Orchestrator

Drives test specifications through Resolving -> Executing -> Reporting:

- resolve(): validates a spec, expands its query templates and allocates
  one run slot (stop conditions + statistics) per resolved query and
  repetition
- run_test(): checks preconditions, applies backend settings and executes
  the slots in order, feeding every progress event into the slot's
  statistics and stop conditions
- run(): executes a list of resolved tests sequentially, honouring the
  cancellation token between and inside tests

Backend failures are recorded on the slot that hit them; sibling slots
still run. A cancellation aborts the current slot cooperatively and skips
everything that has not started.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, List, Optional, Sequence

from perfbench.config import settings
from perfbench.connectors.base import BackendError, ExecutionBackend
from perfbench.core.cancellation import CancellationToken
from perfbench.core.orchestrator_modules.models import ResolvedTest, RunSlot, RunState
from perfbench.core.preconditions import check_preconditions
from perfbench.core.spec_loader import SpecLoader
from perfbench.core.stats import StatsAccumulator
from perfbench.core.stop_conditions import StopConditionSet
from perfbench.core.stopwatch import Clock
from perfbench.core.substitutions import SubstitutionExpander
from perfbench.errors import ConfigurationError, PreconditionFailed
from perfbench.models.metrics import ProgressEvent
from perfbench.models.test_config import ExecutionType, TestSpec

logger = logging.getLogger(__name__)


class RunOrchestrator:
    """Runs resolved tests one slot at a time against a single backend."""

    def __init__(
        self,
        backend: ExecutionBackend,
        loader: Optional[SpecLoader] = None,
        token: Optional[CancellationToken] = None,
        *,
        lite_output: bool = False,
        clock: Clock = time.monotonic,
        reservoir_capacity: Optional[int] = None,
        rng: Optional[random.Random] = None,
        flush_command: Optional[str] = None,
    ):
        self.backend = backend
        self.loader = loader or SpecLoader()
        self.token = token if token is not None else CancellationToken()
        self.lite_output = lite_output
        self._clock = clock
        self._reservoir_capacity = reservoir_capacity or settings.RESERVOIR_CAPACITY
        self._rng = rng
        self._flush_command = flush_command

    # ------------------------------------------------------------------
    # Resolving
    # ------------------------------------------------------------------

    def _new_stats(self, spec: TestSpec) -> StatsAccumulator:
        rows_precision = spec.settings.average_rows_speed_precision
        bytes_precision = spec.settings.average_bytes_speed_precision
        return StatsAccumulator(
            avg_rows_speed_precision=(
                rows_precision
                if rows_precision is not None
                else settings.DEFAULT_AVG_ROWS_SPEED_PRECISION
            ),
            avg_bytes_speed_precision=(
                bytes_precision
                if bytes_precision is not None
                else settings.DEFAULT_AVG_BYTES_SPEED_PRECISION
            ),
            reservoir_capacity=self._reservoir_capacity,
            clock=self._clock,
            rng=self._rng,
        )

    def resolve(self, spec: TestSpec) -> ResolvedTest:
        """
        Validate a spec and allocate its run slots.

        Raises:
            ConfigurationError: the test cannot be run as written
        """
        source = spec.source_path
        if not spec.name:
            raise ConfigurationError("Missing name in test's config", source=source)
        if self.lite_output and spec.main_metric is None:
            raise ConfigurationError("Specify main_metric for lite output", source=source)

        templates = self.loader.read_queries(spec)
        expander = SubstitutionExpander(spec.substitution_map())
        queries = expander.expand_all(templates)
        if not queries:
            raise ConfigurationError(
                f"Did not find any query to execute: {spec.name}", source=source
            )

        stop_template = StopConditionSet.from_template(spec.stop_conditions)

        slots: List[RunSlot] = []
        for repetition in range(1, spec.times_to_run + 1):
            for query_index, query in enumerate(queries):
                slots.append(
                    RunSlot(
                        index=len(slots),
                        query_index=query_index,
                        query=query,
                        repetition=repetition,
                        stop_conditions=stop_template.clone(),
                        stats=self._new_stats(spec),
                    )
                )

        test = ResolvedTest(
            spec=spec,
            name=spec.name,
            queries=queries,
            slots=slots,
            backend_settings=spec.settings.passthrough(),
            state=RunState.RESOLVING,
        )
        logger.debug(
            f"Resolved '{spec.name}': {len(queries)} queries x "
            f"{spec.times_to_run} runs = {len(slots)} slots"
        )
        return test

    def resolve_all(self, specs: Sequence[TestSpec]) -> List[ResolvedTest]:
        """Resolve every spec up front so bad files fail before any query runs."""
        return [self.resolve(spec) for spec in specs]

    # ------------------------------------------------------------------
    # Executing
    # ------------------------------------------------------------------

    def _report_readings(self, slot: RunSlot) -> None:
        stats = slot.stats
        conditions = slot.stop_conditions
        conditions.report_rows_read(stats.total_rows_read)
        conditions.report_bytes_read_uncompressed(stats.total_bytes_read)
        conditions.report_total_time(stats.total_elapsed_ms())
        conditions.report_min_time_not_changing_for(stats.min_time_unchanged_ms())
        conditions.report_max_speed_not_changing_for(stats.max_speed_unchanged_ms())
        conditions.report_average_speed_not_changing_for(stats.avg_speed_unchanged_ms())

    def _on_progress(self, slot: RunSlot, event: ProgressEvent) -> bool:
        """Update statistics then stop conditions; True means stop streaming."""
        if not event.heartbeat:
            slot.stats.add(event.rows, event.bytes)
        self._report_readings(slot)

        stop = slot.stop_conditions.are_fulfilled() or self.token.cancelled
        if stop:
            slot.stats.last_query_was_cancelled = True
            slot.was_cancelled = True
        return stop

    async def _execute(self, slot: RunSlot) -> None:
        """One invocation of the slot's query."""
        stats = slot.stats
        stats.start_query()

        stream = self.backend.stream(slot.query.text)
        try:
            async for event in stream:
                if self._on_progress(slot, event):
                    stream.cancel()
                    break
        finally:
            await stream.aclose()

        if not stats.last_query_was_cancelled:
            stats.update_query_info()
        stats.set_total_time()

    async def _run_slot(self, test: ResolvedTest, slot: RunSlot) -> None:
        slot.invoked = True
        slot.stats.clear()
        slot.stop_conditions.reset()

        try:
            await self._execute(slot)

            if test.execution_type == ExecutionType.LOOP:
                iteration = 1
                while not self.token.cancelled:
                    slot.stop_conditions.report_iterations(iteration)
                    self._report_readings(slot)
                    if slot.stop_conditions.are_fulfilled():
                        break
                    await self._execute(slot)
                    iteration += 1
        except BackendError as e:
            slot.stats.exception = str(e)
            logger.warning(
                f"[{test.name}] query failed (run {slot.repetition}): {e}"
            )

        if not self.token.cancelled:
            slot.stats.ready = True
        logger.debug(
            f"[{test.name}] slot {slot.index} finished "
            f"(stopped by {slot.stop_conditions.fulfilled_kinds()}): {slot.stats.summary()}"
        )

    async def run_test(self, test: ResolvedTest) -> ResolvedTest:
        """
        Execute every slot of a resolved test.

        Preconditions failures and settings errors skip the test
        (``skipped_reason`` is set); they never raise.
        """
        if self.token.cancelled:
            test.state = RunState.ABORTED
            test.skipped_reason = "cancelled before start"
            return test

        try:
            await check_preconditions(test.spec, self.backend, flush_command=self._flush_command)
        except PreconditionFailed as e:
            logger.warning(str(e))
            test.skipped_reason = e.reason
            test.state = RunState.DONE
            return test

        logger.info(f"Running: {test.name}")

        settings_applied = False
        if test.backend_settings:
            try:
                await self.backend.apply_settings(test.backend_settings)
                settings_applied = True
            except BackendError as e:
                logger.error(f"[{test.name}] skipped: {e}")
                test.skipped_reason = str(e)
                test.state = RunState.DONE
                return test

        test.state = RunState.EXECUTING
        try:
            for slot in test.slots:
                if self.token.cancelled:
                    break
                await self._run_slot(test, slot)
        finally:
            if settings_applied:
                try:
                    await self.backend.reset_settings()
                except BackendError as e:
                    logger.warning(f"[{test.name}] could not reset settings: {e}")

        if self.token.cancelled:
            test.state = RunState.ABORTED
            test.aborted = True
            skipped = sum(1 for slot in test.slots if not slot.invoked)
            logger.warning(f"[{test.name}] interrupted; {skipped} run(s) not started")

        test.state = RunState.REPORTING
        return test

    async def run(
        self,
        tests: Sequence[ResolvedTest],
        on_finished: Optional[Callable[[ResolvedTest], None]] = None,
    ) -> List[ResolvedTest]:
        """
        Run tests sequentially.

        Returns the tests that executed (not skipped); on_finished is called
        for each of them as soon as it completes.
        """
        finished: List[ResolvedTest] = []
        for test in tests:
            if self.token.cancelled:
                test.state = RunState.ABORTED
                test.skipped_reason = "cancelled before start"
                continue

            await self.run_test(test)
            if test.skipped_reason is not None:
                continue

            finished.append(test)
            if on_finished is not None:
                on_finished(test)
            test.state = RunState.DONE

        return finished
