"""
Tests for Pydantic models (test specifications and report payloads).
"""

import math

import pytest
from pydantic import ValidationError

from perfbench.models import (
    BackendSettings,
    ExecutionType,
    RunRecord,
    StopConditionsTemplate,
    TestReport,
    TestSpec,
)


def _spec(**overrides) -> TestSpec:
    data = {
        "name": "select_one",
        "type": "loop",
        "query": "SELECT 1",
        "stop_conditions": {"iterations": 10},
        "metrics": ["min_time"],
    }
    data.update(overrides)
    return TestSpec.model_validate(data)


def test_spec_defaults() -> None:
    spec = _spec()

    assert spec.execution_type == ExecutionType.LOOP
    assert spec.times_to_run == 1
    assert spec.query == ["SELECT 1"]
    assert spec.tags == []
    assert spec.effective_main_metric == "min_time"
    assert spec.preconditions.empty


def test_type_is_case_insensitive() -> None:
    assert _spec(type="LOOP").execution_type == ExecutionType.LOOP


def test_main_metric_is_appended_to_metrics() -> None:
    spec = _spec(metrics=["total_time"], main_metric="min_time")

    assert spec.metrics == ["total_time", "min_time"]
    assert spec.effective_main_metric == "min_time"


def test_main_metric_list_uses_first_entry() -> None:
    assert _spec(metrics=[], main_metric=["quantiles"]).main_metric == "quantiles"


def test_metric_of_other_execution_type_is_rejected() -> None:
    with pytest.raises(ValidationError, match="Wrong type of metric for loop execution type"):
        _spec(metrics=["max_rows_per_second"])
    with pytest.raises(ValidationError, match="non-loop execution type"):
        _spec(type="once", metrics=["min_time"])


def test_unknown_metric_is_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown metric"):
        _spec(metrics=["p50"])


def test_metrics_are_required() -> None:
    with pytest.raises(ValidationError, match="at least one metric"):
        _spec(metrics=[])


def test_query_sources_are_exclusive() -> None:
    with pytest.raises(ValidationError, match="Found both query and query_file"):
        _spec(query_file="q.sql")
    with pytest.raises(ValidationError, match="Missing query fields"):
        _spec(query=None)
    with pytest.raises(ValidationError, match="Empty file name"):
        _spec(query=None, query_file="  ")


def test_stop_conditions_are_required() -> None:
    with pytest.raises(ValidationError, match="No termination conditions"):
        _spec(stop_conditions={})


def test_stop_conditions_reject_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        _spec(stop_conditions={"rows_written": 5})


def test_stop_conditions_groups() -> None:
    template = StopConditionsTemplate.model_validate(
        {"any_of": {"total_time_ms": 1000}, "all_of": {"iterations": 5}}
    )

    assert template.any_of.configured() == {"total_time_ms": 1000}
    assert template.all_of.configured() == {"iterations": 5}
    assert not template.empty


def test_times_to_run_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        _spec(times_to_run=0)


def test_backend_settings_passthrough() -> None:
    settings = BackendSettings.model_validate(
        {
            "profile": "fast",
            "average_rows_speed_precision": 0.01,
            "work_mem": "64MB",
            "max_parallel_workers": 8,
            "jit": False,
            "enable_seqscan": None,
        }
    )

    assert settings.average_rows_speed_precision == 0.01
    assert settings.passthrough() == {
        "work_mem": "64MB",
        "max_parallel_workers": "8",
        "jit": "false",
        "enable_seqscan": "true",
    }


def test_substitution_map_merges_repeated_names() -> None:
    spec = _spec(
        substitutions=[
            {"name": "table", "values": ["hits"]},
            {"name": "limit", "values": [10, 100]},
            {"name": "table", "values": "visits"},
        ]
    )

    assert spec.substitution_map() == {"table": ["hits", "visits"], "limit": ["10", "100"]}


def test_preconditions_coerce_single_table() -> None:
    spec = _spec(preconditions={"table_exists": "hits", "ram_size": 1024})

    assert spec.preconditions.table_exists == ["hits"]
    assert not spec.preconditions.empty


def test_run_record_payload_replaces_non_finite_values() -> None:
    record = RunRecord(
        query="SELECT 1",
        repetition=1,
        parameters={"x": "1"},
        metrics={"min_time": math.inf, "quantiles": {"0.5": math.nan, "0.9": 0.2}},
    )

    assert record.to_dict() == {
        "query": "SELECT 1",
        "parameters": {"x": "1"},
        "min_time": None,
        "quantiles": {"0.5": None, "0.9": 0.2},
    }


def test_failed_run_record_payload() -> None:
    record = RunRecord(query="SELECT 1", repetition=2, exception="connection lost")

    assert record.to_dict() == {"query": "SELECT 1", "exception": "connection lost"}


def test_report_payload() -> None:
    report = TestReport(
        hostname="bench-01",
        num_cores=4,
        num_threads=8,
        ram=16 * 2**30,
        server_version="16.2.0",
        time="2024-01-01 00:00:00",
        test_name="select_one",
        main_metric="min_time",
        runs=[RunRecord(query="SELECT 1", repetition=1, metrics={"min_time": 0.001})],
    )

    payload = report.to_dict()

    assert payload["test_name"] == "select_one"
    assert "parameters" not in payload
    assert payload["runs"] == [{"query": "SELECT 1", "min_time": 0.001}]
