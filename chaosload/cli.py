from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from chaosload import telemetry
from chaosload.cancellation import ShutdownSignals
from chaosload.config import TestFlowOptions, options_from_env
from chaosload.exceptions import ChaosloadError, TestFlowError
from chaosload.testflow import TestFlow

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

# argparse dest -> TestFlowOptions field.
_FLAG_FIELDS: Dict[str, str] = {
    "workers": "workers",
    "jobs": "jobs_per_worker",
    "latencies": "latencies",
    "percents": "percents",
    "sleep": "drain_seconds",
    "kubeconfig": "kubeconfig",
    "chaos_agent_kubeconfig": "chaos_kubeconfig",
    "chaos_agent_template": "chaos_template",
    "chaos_agent_poll_interval": "poll_interval_seconds",
    "chaos_agent_poll_timeout": "poll_timeout_seconds",
    "namespace": "namespace",
    "summarize": "summarize",
    "export_to_csv": "export_to_csv",
    "export_folder_path": "export_folder",
    "metrics_file": "metrics_file",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chaosload",
        description=(
            "Measure API server request latency and success rate while an IO "
            "fault-injection condition is applied at increasing intensity."
        ),
    )
    # Defaults stay None so unset flags fall through to CHAOSLOAD_* variables.
    parser.add_argument("-w", "--workers", type=int, help="Number of concurrent workers (default 30).")
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        help="CRUD cycles per worker per test case, -1 for unbounded (default 100).",
    )
    parser.add_argument(
        "-l", "--latencies", help="Comma-separated latencies, e.g. 0ms,10ms,20ms."
    )
    parser.add_argument("-p", "--percents", help="Comma-separated percents, e.g. 10,50.")
    parser.add_argument(
        "-s",
        "--sleep",
        type=float,
        help="Seconds to wait after the run phase before teardown (default 60).",
    )
    parser.add_argument(
        "-k", "--kubeconfig", help="Kubeconfig for the workers, empty for in-cluster."
    )
    parser.add_argument(
        "-c",
        "--chaos-agent-kubeconfig",
        help="Kubeconfig for the condition agent, empty for in-cluster.",
    )
    parser.add_argument("--chaos-agent-template", help="IOChaos template file (YAML or JSON).")
    parser.add_argument(
        "--chaos-agent-poll-interval", type=float, help="Seconds between condition polls."
    )
    parser.add_argument(
        "--chaos-agent-poll-timeout", type=float, help="Condition poll deadline in seconds."
    )
    parser.add_argument("--namespace", help="Namespace for worker resources.")
    parser.add_argument(
        "--summarize",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Print a summary after each test case.",
    )
    parser.add_argument(
        "--export-to-csv",
        action="store_true",
        default=None,
        help="Write the final CSV report.",
    )
    parser.add_argument("-f", "--export-folder-path", help="Folder for the CSV report.")
    parser.add_argument("--metrics-file", help="Write a Prometheus text dump here at the end.")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only.")
    return parser


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Per-request lines from httpx would drown the worker logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def options_from_args(
    args: argparse.Namespace, environ: Optional[Dict[str, str]] = None
) -> TestFlowOptions:
    overrides: Dict[str, Any] = {
        field: getattr(args, dest) for dest, field in _FLAG_FIELDS.items()
    }
    return options_from_env(environ, **overrides)


def main(
    argv: Optional[List[str]] = None, *, signals: Optional[ShutdownSignals] = None
) -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    try:
        options = options_from_args(args)
    except ValidationError as exc:
        parser.error(str(exc))

    if telemetry.configure():
        logger.info("logfire tracing enabled")

    if signals is None:
        signals = ShutdownSignals()
        signals.install()

    try:
        flow = TestFlow.from_options(options)
    except ChaosloadError as exc:
        logger.error("failed to initialize test flow: %s", exc)
        return EXIT_FAILURE

    try:
        flow.run(signals.run, signals.process)
    except TestFlowError as exc:
        logger.error("test flow aborted: %s", exc)
        return EXIT_FAILURE
    finally:
        flow.close()

    if signals.run.cancelled:
        logger.warning("test flow stopped early on request")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
