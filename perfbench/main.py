"""
perfbench - command-line entry point

Discovers YAML test files, selects and resolves them, runs them against a
Postgres server and prints either a JSON report array or lite lines.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional, Sequence

from perfbench.config import settings
from perfbench.connectors.base import BackendError
from perfbench.connectors.postgres_stream import PostgresBackend
from perfbench.core.cancellation import (
    CancellationToken,
    install_signal_handlers,
    remove_signal_handlers,
)
from perfbench.core.orchestrator import RunOrchestrator
from perfbench.core.orchestrator_modules.models import ResolvedTest
from perfbench.core.report import build_report, collect_environment, lite_lines, render_reports
from perfbench.core.spec_loader import SpecLoader, discover_spec_files
from perfbench.core.test_selector import build_filter, select
from perfbench.errors import ConfigurationError
from perfbench.models.metrics import TestReport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(settings.LOG_FILE)
            if settings.LOG_FILE
            else logging.NullHandler(),
        ],
    )
    # Suppress asyncpg's own connection chatter
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perfbench",
        description="Run declarative query performance tests against a Postgres server.",
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        help="Test files (.yaml/.yml) or folders with test files. "
        "Defaults to the current folder.",
    )
    parser.add_argument(
        "--lite",
        action="store_true",
        help="Print one line per run with the main metric instead of a JSON report.",
    )
    parser.add_argument(
        "--profiles-file",
        default=None,
        help="YAML file with named settings profiles.",
    )
    parser.add_argument("--host", default=None, help="Server host.")
    parser.add_argument("--port", type=int, default=None, help="Server port.")
    parser.add_argument(
        "--secure",
        action="store_true",
        default=None,
        help="Use a TLS connection.",
    )
    parser.add_argument("--database", default=None, help="Database name.")
    parser.add_argument("--user", default=None, help="User name.")
    parser.add_argument("--password", default=None, help="Password.")
    parser.add_argument(
        "--tags", nargs="+", default=[], help="Run only tests with any of these tags."
    )
    parser.add_argument(
        "--skip-tags", nargs="+", default=[], help="Skip tests with any of these tags."
    )
    parser.add_argument(
        "--names", nargs="+", default=[], help="Run only tests with these names."
    )
    parser.add_argument(
        "--skip-names", nargs="+", default=[], help="Skip tests with these names."
    )
    parser.add_argument(
        "--names-regexp",
        nargs="+",
        default=[],
        help="Run only tests whose name matches any of these regexps.",
    )
    parser.add_argument(
        "--skip-names-regexp",
        nargs="+",
        default=[],
        help="Skip tests whose name matches any of these regexps.",
    )
    parser.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Search folders recursively.",
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    files = discover_spec_files(args.inputs, recursive=args.recursive)
    loader = SpecLoader(args.profiles_file)
    specs = loader.load_specs(files)

    include = build_filter(args.tags, args.names, args.names_regexp)
    exclude = build_filter(args.skip_tags, args.skip_names, args.skip_names_regexp)
    specs = select(specs, include, exclude)

    backend = PostgresBackend.from_settings(
        host=args.host,
        port=args.port,
        database=args.database,
        user=args.user,
        password=args.password,
        ssl=args.secure,
    )
    token = CancellationToken()
    orchestrator = RunOrchestrator(backend, loader, token, lite_output=args.lite)

    # Configuration errors surface here, before any connection is made
    tests = orchestrator.resolve_all(specs)
    if not tests:
        logger.warning("No tests selected")
        if not args.lite:
            print(render_reports([]))
        return EXIT_OK

    reports: List[TestReport] = []

    await backend.connect()
    loop = asyncio.get_running_loop()
    installed = install_signal_handlers(token, loop)
    try:
        environment = collect_environment(await backend.server_version())

        def on_finished(test: ResolvedTest) -> None:
            if args.lite:
                for line in lite_lines(test):
                    print(line, flush=True)
            else:
                reports.append(build_report(test, environment))

        await orchestrator.run(tests, on_finished)
    finally:
        remove_signal_handlers(loop, installed)
        await backend.close()

    if not args.lite:
        print(render_reports(reports))

    return EXIT_INTERRUPTED if token.cancelled else EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE
    except BackendError as e:
        logger.error(f"Backend error: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
