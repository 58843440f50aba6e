"""
Test-flow configuration.

Options are immutable once built. Defaults can be overridden through
CHAOSLOAD_* environment variables, then by explicit keyword arguments
(the CLI passes its flags that way).

Usage:
    from chaosload.config import options_from_env

    options = options_from_env(workers=2, jobs_per_worker=3)
    for case in options.test_cases():
        ...
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from chaosload.models import UNBOUNDED_JOBS, TestCaseID, latency_millis

DEFAULT_LATENCIES: Tuple[str, ...] = (
    "0ms",
    "10ms",
    "20ms",
    "30ms",
    "40ms",
    "50ms",
    "60ms",
    "70ms",
    "100ms",
    "200ms",
    "300ms",
)
DEFAULT_PERCENTS: Tuple[int, ...] = (10, 20, 30, 40, 50, 60, 70)

# Valid: 0ms, 1ms, 10ms. Invalid: 01ms, "1 ms", " 20ms", "9ms ".
_LATENCY_RE = re.compile(r"^(0ms|[1-9][0-9]*ms)$")


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item for item in value.split(",") if item != ""]
    return value


class TestFlowOptions(BaseModel):
    """
    Immutable configuration of a chaosload run.

    Attributes:
        workers: Number of concurrent workers.
        jobs_per_worker: CRUD cycles per worker per test case, or
            UNBOUNDED_JOBS to cycle until stopped.
        latencies: Latency labels applied to the condition, sorted ascending.
        percents: Percent values applied to the condition, sorted ascending.
        poll_interval_seconds: Delay between condition status polls.
        poll_timeout_seconds: Deadline for a condition to reach its state.
        drain_seconds: Sleep after the run phase before teardown.
        namespace: Namespace the workers create resources in.
        kubeconfig: Kubeconfig for the workers ("" means in-cluster).
        chaos_kubeconfig: Kubeconfig for the condition agent ("" means in-cluster).
        chaos_template: Path to the YAML/JSON condition template.
        summarize: Print a summary after each test case.
        export_to_csv: Write the final CSV report.
        export_folder: Folder the CSV report is written to.
        metrics_file: Optional path for a Prometheus text dump of all series.
        retry_attempts: Attempts for transient condition/cleanup API errors.
        retry_base_delay: Base backoff delay in seconds.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    workers: int = Field(default=30, ge=1)
    jobs_per_worker: int = 100
    latencies: Tuple[str, ...] = DEFAULT_LATENCIES
    percents: Tuple[int, ...] = DEFAULT_PERCENTS
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    poll_timeout_seconds: float = Field(default=60.0, gt=0)
    drain_seconds: float = Field(default=60.0, ge=0)
    namespace: str = "default"
    kubeconfig: str = "kubeconfig"
    chaos_kubeconfig: str = ""
    chaos_template: str = ""
    summarize: bool = True
    export_to_csv: bool = False
    export_folder: str = "."
    metrics_file: Optional[str] = None
    retry_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)

    @field_validator("jobs_per_worker")
    @classmethod
    def _check_jobs(cls, value: int) -> int:
        if value != UNBOUNDED_JOBS and value < 1:
            raise ValueError(
                f"jobs_per_worker must be >= 1 or {UNBOUNDED_JOBS} (unbounded)"
            )
        return value

    @field_validator("latencies", mode="before")
    @classmethod
    def _split_latencies(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("latencies")
    @classmethod
    def _check_latencies(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not value:
            raise ValueError("at least one latency is required")
        for latency in value:
            if not _LATENCY_RE.match(latency):
                raise ValueError(
                    f"{latency!r} is not a valid latency "
                    f"(valid format regex: {_LATENCY_RE.pattern})"
                )
        millis = sorted({latency_millis(latency) for latency in value})
        return tuple(f"{ms}ms" for ms in millis)

    @field_validator("percents", mode="before")
    @classmethod
    def _split_percents(cls, value: Any) -> Any:
        value = _split_csv(value)
        if isinstance(value, (list, tuple)):
            return [item.strip() if isinstance(item, str) else item for item in value]
        return value

    @field_validator("percents")
    @classmethod
    def _check_percents(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        if not value:
            raise ValueError("at least one percent is required")
        for percent in value:
            if percent < 0 or percent > 100:
                raise ValueError(
                    f"{percent} is not a valid percent (should be in range [0, 100])"
                )
        return tuple(sorted(set(value)))

    @model_validator(mode="after")
    def _check_export_folder(self) -> "TestFlowOptions":
        if self.export_to_csv and self.export_folder:
            folder = Path(self.export_folder)
            if not folder.is_dir():
                raise ValueError(
                    f"export destination {self.export_folder} is not a valid directory"
                )
        return self

    @property
    def unbounded(self) -> bool:
        return self.jobs_per_worker == UNBOUNDED_JOBS

    def test_cases(self) -> Iterator[TestCaseID]:
        """Yield the matrix: percents ascending outside, latencies ascending inside."""
        for percent in self.percents:
            for latency in self.latencies:
                yield TestCaseID(latency=latency, percent=percent)

    @property
    def total_test_cases(self) -> int:
        return len(self.percents) * len(self.latencies)


# Field name -> environment variable.
ENV_VARS: Dict[str, str] = {
    "workers": "CHAOSLOAD_WORKERS",
    "jobs_per_worker": "CHAOSLOAD_JOBS",
    "latencies": "CHAOSLOAD_LATENCIES",
    "percents": "CHAOSLOAD_PERCENTS",
    "poll_interval_seconds": "CHAOSLOAD_POLL_INTERVAL",
    "poll_timeout_seconds": "CHAOSLOAD_POLL_TIMEOUT",
    "drain_seconds": "CHAOSLOAD_SLEEP",
    "namespace": "CHAOSLOAD_NAMESPACE",
    "kubeconfig": "CHAOSLOAD_KUBECONFIG",
    "chaos_kubeconfig": "CHAOSLOAD_CHAOS_KUBECONFIG",
    "chaos_template": "CHAOSLOAD_CHAOS_TEMPLATE",
    "summarize": "CHAOSLOAD_SUMMARIZE",
    "export_to_csv": "CHAOSLOAD_EXPORT_TO_CSV",
    "export_folder": "CHAOSLOAD_EXPORT_FOLDER",
    "metrics_file": "CHAOSLOAD_METRICS_FILE",
    "retry_attempts": "CHAOSLOAD_RETRY_ATTEMPTS",
    "retry_base_delay": "CHAOSLOAD_RETRY_BASE_DELAY",
}


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Collect option values set through CHAOSLOAD_* environment variables."""
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for field, var in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw.strip() == "":
            continue
        values[field] = raw.strip()
    return values


def options_from_env(
    environ: Optional[Dict[str, str]] = None, **overrides: Any
) -> TestFlowOptions:
    """
    Build options from defaults, then environment, then explicit overrides.

    Overrides whose value is None are ignored so unset CLI flags fall
    through to the environment.
    """
    values = env_overrides(environ)
    values.update({k: v for k, v in overrides.items() if v is not None})
    return TestFlowOptions(**values)


def describe(options: TestFlowOptions) -> List[str]:
    """Human-readable option lines for the start-of-run log."""
    jobs = "unbounded" if options.unbounded else str(options.jobs_per_worker)
    return [
        f"workers={options.workers} jobs_per_worker={jobs}",
        f"latencies={','.join(options.latencies)}",
        f"percents={','.join(str(p) for p in options.percents)}",
        f"poll_interval={options.poll_interval_seconds}s "
        f"poll_timeout={options.poll_timeout_seconds}s "
        f"drain={options.drain_seconds}s",
    ]
