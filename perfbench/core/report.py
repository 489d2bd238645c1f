"""
Report building.

Turns a finished ResolvedTest into a TestReport (structured output) or
into compact lite lines, and renders the JSON array printed at the end.
"""

import json
import logging
import os
import socket
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import psutil

from perfbench.core.orchestrator_modules.models import ResolvedTest, RunSlot
from perfbench.models.metrics import RunRecord, TestReport

logger = logging.getLogger(__name__)


@dataclass
class EnvironmentInfo:
    """Facts about the machine running the benchmark."""

    hostname: str
    num_cores: Optional[int]
    num_threads: Optional[int]
    ram: Optional[int]
    server_version: str = ""


def collect_environment(server_version: str = "") -> EnvironmentInfo:
    try:
        hostname = socket.getfqdn()
    except OSError:
        hostname = socket.gethostname()
    try:
        ram = int(psutil.virtual_memory().total)
    except (OSError, RuntimeError) as e:
        logger.debug(f"RAM size not available: {e}")
        ram = None
    return EnvironmentInfo(
        hostname=hostname,
        num_cores=psutil.cpu_count(logical=False),
        num_threads=psutil.cpu_count(logical=True) or os.cpu_count(),
        ram=ram,
        server_version=server_version,
    )


def current_time_string() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())


def build_run_record(slot: RunSlot, metrics: Sequence[str]) -> RunRecord:
    record = RunRecord(
        query=slot.query.text,
        repetition=slot.repetition,
        exception=slot.exception,
        parameters=dict(slot.query.parameters) or None,
    )
    if slot.exception is None:
        record.metrics = {name: slot.stats.metric_value(name) for name in metrics}
    return record


def build_report(
    test: ResolvedTest,
    environment: EnvironmentInfo,
    timestamp: Optional[str] = None,
) -> TestReport:
    """Structured report; only slots that became ready are included."""
    parameters = test.spec.substitution_map()
    return TestReport(
        hostname=environment.hostname,
        num_cores=environment.num_cores,
        num_threads=environment.num_threads,
        ram=environment.ram,
        server_version=environment.server_version,
        time=timestamp or current_time_string(),
        test_name=test.name,
        main_metric=test.main_metric,
        parameters=parameters or None,
        runs=[build_run_record(slot, test.metrics) for slot in test.ready_slots()],
    )


def lite_lines(test: ResolvedTest) -> List[str]:
    """One compact line per ready run slot, showing only the main metric."""
    lines: List[str] = []
    multiple_queries = len(test.queries) > 1
    for slot in test.ready_slots():
        line = ""
        if multiple_queries:
            line += f'query "{slot.query.text}", '
        for name, value in slot.query.parameters.items():
            line += f"{name} = {value}, "
        line += f"run {slot.repetition}: {test.main_metric} = "
        if slot.exception is not None:
            line += f"exception: {slot.exception}"
        else:
            line += slot.stats.get_statistic_by_name(test.main_metric)
        lines.append(line)
    return lines


def render_reports(reports: Sequence[TestReport]) -> str:
    return json.dumps([report.to_dict() for report in reports], indent=4)
