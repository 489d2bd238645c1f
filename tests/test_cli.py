"""
Tests for the command-line entry point.

The Postgres backend is replaced by the scripted backend from conftest.
"""

import json
from unittest.mock import patch

from perfbench.core.cancellation import CancellationToken
from perfbench.main import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_OK, _build_parser, main


SPEC = """\
name: {name}
tags: [{tag}]
type: once
query: [A, B]
stop_conditions:
  total_time_ms: 60000
metrics: [max_rows_per_second]
"""


def _write_spec(directory, name, tag="smoke", extra=""):
    path = directory / f"{name}.yaml"
    path.write_text(SPEC.format(name=name, tag=tag) + extra, encoding="utf-8")
    return path


def test_parser_flags() -> None:
    args = _build_parser().parse_args(
        [
            "--lite",
            "--host",
            "db",
            "--port",
            "6432",
            "--secure",
            "--tags",
            "a",
            "b",
            "--skip-names-regexp",
            "^slow",
            "-r",
            "tests_dir",
        ]
    )

    assert args.lite
    assert args.host == "db"
    assert args.port == 6432
    assert args.secure is True
    assert args.tags == ["a", "b"]
    assert args.skip_names_regexp == ["^slow"]
    assert args.recursive
    assert args.inputs == ["tests_dir"]
    assert args.database is None


def test_json_report(tmp_path, capsys, backend) -> None:
    _write_spec(tmp_path, "first", tag="smoke")
    _write_spec(tmp_path, "second", tag="slow")

    with patch("perfbench.main.PostgresBackend.from_settings", return_value=backend):
        code = main([str(tmp_path), "--skip-tags", "slow"])

    assert code == EXIT_OK
    reports = json.loads(capsys.readouterr().out)
    assert [report["test_name"] for report in reports] == ["first"]
    assert reports[0]["server_version"] == "16.2.0"
    assert [run["query"] for run in reports[0]["runs"]] == ["A", "B"]
    assert backend.invocations == ["A", "B"]
    assert not backend.connected


def test_lite_output(tmp_path, capsys, backend) -> None:
    path = _write_spec(tmp_path, "first", extra="main_metric: max_rows_per_second\n")

    with patch("perfbench.main.PostgresBackend.from_settings", return_value=backend):
        code = main(["--lite", str(path)])

    assert code == EXIT_OK
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith('query "A", run 1: max_rows_per_second = ')


def test_configuration_error_stops_before_connecting(tmp_path, capsys, backend) -> None:
    path = _write_spec(tmp_path, "first")

    with patch("perfbench.main.PostgresBackend.from_settings", return_value=backend):
        # Lite output needs an explicit main_metric.
        code = main(["--lite", str(path)])

    assert code == EXIT_FAILURE
    assert backend.invocations == []
    assert not backend.connected
    assert capsys.readouterr().out == ""


def test_missing_input_is_a_configuration_error(tmp_path) -> None:
    assert main([str(tmp_path / "missing.yaml")]) == EXIT_FAILURE


def test_interrupt_prints_partial_report(tmp_path, capsys, backend) -> None:
    path = _write_spec(tmp_path, "first")
    token = CancellationToken()
    backend.on_stream = lambda query, invocation: token.cancel("test") if query == "B" else None

    with patch("perfbench.main.PostgresBackend.from_settings", return_value=backend), patch(
        "perfbench.main.CancellationToken", return_value=token
    ):
        code = main([str(path)])

    assert code == EXIT_INTERRUPTED
    reports = json.loads(capsys.readouterr().out)
    assert [run["query"] for run in reports[0]["runs"]] == ["A"]
