"""
chaosload - API server load testing under injected IO faults.

Runs a matrix of (latency, percent) conditions. For each one it applies a
Chaos Mesh IOChaos object, drives concurrent CRUD workers against the API
server, and reports per-verb success rate and latency quantiles.

Programmatic usage:
    from chaosload import ShutdownSignals, TestFlow, options_from_env

    options = options_from_env(workers=2, jobs_per_worker=3, chaos_template="iochaos.yaml")
    signals = ShutdownSignals()
    flow = TestFlow.from_options(options)
    try:
        flow.run(signals.run, signals.process)
    finally:
        flow.close()

Advanced usage via submodules:
    from chaosload.metrics import MetricsAggregator, ReportExporter
    from chaosload.clients import KubeResourceClient, load_connection
"""

# =============================================================================
# Orchestration
# =============================================================================
from chaosload.testflow import Phase, TestCaseResult, TestFlow  # noqa: F401
from chaosload.pool import WorkerPool  # noqa: F401
from chaosload.worker import Worker  # noqa: F401
from chaosload.condition import ConditionAgent, ConditionSpec  # noqa: F401
from chaosload.cancellation import CancelToken, ShutdownSignals  # noqa: F401

# =============================================================================
# Configuration and data types
# =============================================================================
from chaosload.config import TestFlowOptions, options_from_env  # noqa: F401
from chaosload.models import (  # noqa: F401
    UNBOUNDED_JOBS,
    ConditionPhase,
    OperationRecord,
    TestCaseID,
    Verb,
    WorkerLabels,
)
from chaosload.metrics import MetricsAggregator, MetricsSnapshot  # noqa: F401

# =============================================================================
# Errors
# =============================================================================
from chaosload.exceptions import (  # noqa: F401
    ChaosloadError,
    ChaosloadConfigError,
    ApiError,
    AlreadyExistsError,
    NotFoundError,
    ConditionError,
    ConditionTimeoutError,
    WorkerPoolError,
    TestFlowError,
)

__all__ = [
    "Phase",
    "TestCaseResult",
    "TestFlow",
    "WorkerPool",
    "Worker",
    "ConditionAgent",
    "ConditionSpec",
    "CancelToken",
    "ShutdownSignals",
    "TestFlowOptions",
    "options_from_env",
    "UNBOUNDED_JOBS",
    "ConditionPhase",
    "OperationRecord",
    "TestCaseID",
    "Verb",
    "WorkerLabels",
    "MetricsAggregator",
    "MetricsSnapshot",
    "ChaosloadError",
    "ChaosloadConfigError",
    "ApiError",
    "AlreadyExistsError",
    "NotFoundError",
    "ConditionError",
    "ConditionTimeoutError",
    "WorkerPoolError",
    "TestFlowError",
]

__version__ = "0.1.0"
