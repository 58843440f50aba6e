"""
TestFlow: runs the (latency, percent) matrix.

For each test case, strictly in this order:

    PreCleanup -> ConditionCreate -> Run -> Snapshot -> Drain
               -> ConditionDelete -> PostCleanup -> Done

Run is the only phase that watches the run token. Everything after it,
including cleanup, watches the process token, so a first stop signal ends the
run phase early and still lets teardown finish. A condition create/delete
failure aborts the matrix once PostCleanup has run. Failures inside Run and
cleanup are logged and the matrix carries on.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from chaosload import telemetry
from chaosload.cancellation import CancelToken
from chaosload.clients import (
    DEPLOYMENTS,
    PODS,
    KubeConditionClient,
    KubeResourceClient,
    load_connection,
)
from chaosload.condition import ConditionAgent, ConditionSpec, load_template
from chaosload.config import TestFlowOptions, describe
from chaosload.exceptions import ConditionError, TestFlowError, WorkerPoolError
from chaosload.metrics import MetricsAggregator, MetricsSnapshot, ReportExporter, format_summary
from chaosload.models import TestCaseID, utc_now
from chaosload.pool import WorkerPool
from chaosload.worker import Worker

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """States a test case moves through."""

    PRE_CLEANUP = "pre_cleanup"
    CONDITION_CREATE = "condition_create"
    RUN = "run"
    SNAPSHOT = "snapshot"
    DRAIN = "drain"
    CONDITION_DELETE = "condition_delete"
    POST_CLEANUP = "post_cleanup"
    DONE = "done"


@dataclass(frozen=True)
class TestCaseResult:
    """
    Outcome of one completed run phase.

    Attributes:
        test_case: The matrix cell.
        started: Start of the run phase.
        finished: End of the run phase.
        snapshot: Metrics captured right after the run phase.
        run_error: Set when a worker task raised behind the barrier.
    """

    __test__ = False

    test_case: TestCaseID
    started: datetime
    finished: datetime
    snapshot: MetricsSnapshot
    run_error: Optional[WorkerPoolError] = None


class TestFlow:
    """
    Sequences condition lifecycle, workers, metrics and cleanup over the matrix.

    Args:
        options: Immutable run configuration.
        agent: Condition lifecycle agent.
        pool: Worker pool for the run and cleanup phases.
        metrics: Aggregator the workers record into.
        exporter: CSV report exporter; built from options when export_to_csv
            is set and none is given.
        output: Where per-test-case summaries go (stdout by default).
        on_phase: Called with (test case, phase) on every phase entry.
    """

    __test__ = False

    def __init__(
        self,
        options: TestFlowOptions,
        agent: ConditionAgent,
        pool: WorkerPool,
        metrics: MetricsAggregator,
        *,
        exporter: Optional[ReportExporter] = None,
        output: Callable[[str], None] = print,
        on_phase: Optional[Callable[[TestCaseID, Phase], None]] = None,
    ) -> None:
        self.options = options
        self.agent = agent
        self.pool = pool
        self.metrics = metrics
        if exporter is None and options.export_to_csv:
            exporter = ReportExporter(options.latencies, options.percents)
        self.exporter = exporter
        self.results: List[TestCaseResult] = []
        self._output = output
        self._on_phase = on_phase
        self._closeables: List[Any] = []

    @classmethod
    def from_options(
        cls,
        options: TestFlowOptions,
        metrics: Optional[MetricsAggregator] = None,
        **kwargs: Any,
    ) -> "TestFlow":
        """
        Build a flow talking to real API servers.

        The condition agent and the workers may use different kubeconfigs;
        every worker gets its own HTTP clients.
        """
        template = load_template(options.chaos_template)
        condition_client = KubeConditionClient(load_connection(options.chaos_kubeconfig))
        agent = ConditionAgent(
            condition_client,
            template,
            poll_interval=options.poll_interval_seconds,
            poll_timeout=options.poll_timeout_seconds,
            retry_attempts=options.retry_attempts,
            retry_base_delay=options.retry_base_delay,
            namespace=options.namespace,
        )

        connection = load_connection(options.kubeconfig)
        metrics = metrics or MetricsAggregator()
        closeables: List[Any] = [condition_client]
        workers = []
        for worker_id in range(options.workers):
            deployments = KubeResourceClient(connection, *DEPLOYMENTS)
            pods = KubeResourceClient(connection, *PODS)
            closeables.extend([deployments, pods])
            workers.append(
                Worker(
                    worker_id,
                    deployments,
                    pods,
                    metrics,
                    namespace=options.namespace,
                    cleanup_attempts=options.retry_attempts,
                    cleanup_base_delay=options.retry_base_delay,
                )
            )

        flow = cls(options, agent, WorkerPool(workers), metrics, **kwargs)
        flow._closeables = closeables
        return flow

    def close(self) -> None:
        for closeable in self._closeables:
            closeable.close()
        self._closeables = []

    def run(self, run_token: CancelToken, process_token: CancelToken) -> List[TestCaseResult]:
        """
        Run every test case in matrix order.

        Returns:
            Results of the test cases whose run phase completed.

        Raises:
            TestFlowError: A condition could not be created or deleted.
        """
        total = self.options.total_test_cases
        logger.info("starting test flow with %d test case(s)", total)
        for line in describe(self.options):
            logger.info("  %s", line)

        started = utc_now()
        try:
            for index, case in enumerate(self.options.test_cases(), start=1):
                if run_token.cancelled:
                    logger.warning(
                        "stop requested, skipping the remaining %d test case(s)",
                        total - index + 1,
                    )
                    break
                self._run_test_case(case, index, total, run_token, process_token)
        finally:
            finished = utc_now()
            logger.info("test flow started at %s", started.astimezone())
            logger.info("test flow finished at %s", finished.astimezone())
            logger.info("test flow duration: %s", finished - started)
            self._export(started)

        logger.info("successfully finished test flow")
        return list(self.results)

    @contextmanager
    def _phase(self, case: TestCaseID, phase: Phase) -> Iterator[None]:
        logger.debug("%s: entering %s", case, phase.value)
        if self._on_phase is not None:
            self._on_phase(case, phase)
        with telemetry.span(
            f"chaosload.{phase.value}", latency=case.latency, percent=case.percent
        ):
            yield

    def _run_test_case(
        self,
        case: TestCaseID,
        index: int,
        total: int,
        run_token: CancelToken,
        process_token: CancelToken,
    ) -> None:
        logger.info(
            "starting test case (%d/%d) with condition (latency: %s, percent: %s)",
            index,
            total,
            case.latency,
            case.percent,
        )
        with telemetry.span("chaosload.test_case", latency=case.latency, percent=case.percent):
            with self._phase(case, Phase.PRE_CLEANUP):
                self._cleanup(process_token)

            spec = self.agent.instantiate(case.latency, case.percent)
            errors: List[ConditionError] = []
            try:
                self._condition_and_run(case, spec, run_token, process_token)
            except ConditionError as exc:
                logger.error("%s", exc)
                errors.append(exc)
            finally:
                try:
                    with self._phase(case, Phase.CONDITION_DELETE):
                        self.agent.delete(spec)
                except ConditionError as exc:
                    logger.error("%s", exc)
                    if errors:
                        exc.__cause__ = errors[-1]
                    errors.append(exc)
                finally:
                    with self._phase(case, Phase.POST_CLEANUP):
                        self._cleanup(process_token)

            if errors:
                message = ": ".join(error.message for error in reversed(errors))
                raise TestFlowError(
                    f"test case {case} aborted: {message}",
                    latency=case.latency,
                    percent=case.percent,
                ) from errors[-1]

            with self._phase(case, Phase.DONE):
                logger.info(
                    "successfully finished tests with condition (latency: %s, percent: %s)",
                    case.latency,
                    case.percent,
                )

    def _condition_and_run(
        self,
        case: TestCaseID,
        spec: ConditionSpec,
        run_token: CancelToken,
        process_token: CancelToken,
    ) -> None:
        with self._phase(case, Phase.CONDITION_CREATE):
            self.agent.create(spec)

        run_error: Optional[WorkerPoolError] = None
        with self._phase(case, Phase.RUN):
            started = utc_now()
            try:
                self.pool.run_all(run_token, self.options.jobs_per_worker, case)
            except WorkerPoolError as exc:
                logger.error("run phase of %s finished with worker failures: %s", case, exc)
                run_error = exc
            finished = utc_now()

        # Taken before the drain sleep so nothing recorded during the run can age out.
        with self._phase(case, Phase.SNAPSHOT):
            result = TestCaseResult(
                test_case=case,
                started=started,
                finished=finished,
                snapshot=self.metrics.snapshot(case),
                run_error=run_error,
            )
            self.results.append(result)
            self._report(result)

        with self._phase(case, Phase.DRAIN):
            logger.debug(
                "sleeping %s seconds before cleanup, waiting for deletions to be "
                "gracefully proceeded",
                self.options.drain_seconds,
            )
            process_token.wait(self.options.drain_seconds)

    def _cleanup(self, process_token: CancelToken) -> None:
        try:
            self.pool.cleanup_all(process_token)
        except WorkerPoolError as exc:
            logger.error("cleanup finished with worker failures: %s", exc)

    def _report(self, result: TestCaseResult) -> None:
        if self.options.summarize:
            try:
                self._output(
                    format_summary(
                        result.snapshot,
                        self.options.workers,
                        self.options.jobs_per_worker,
                        result.started,
                        result.finished,
                    )
                )
            except Exception:
                logger.exception("failed to print summary for %s", result.test_case)
        if self.exporter is not None:
            try:
                self.exporter.collect(result.snapshot)
            except Exception:
                logger.exception("failed to collect metrics for %s", result.test_case)

    def _export(self, started: datetime) -> None:
        if self.exporter is not None and self.exporter.collected:
            try:
                self.exporter.write_to_folder(
                    self.options.export_folder,
                    workers=self.options.workers,
                    jobs_per_worker=self.options.jobs_per_worker,
                    started=started,
                )
            except Exception:
                logger.exception("failed to export the final report")
        if self.options.metrics_file:
            try:
                Path(self.options.metrics_file).write_text(
                    self.metrics.prometheus_format() + "\n", encoding="utf-8"
                )
            except OSError:
                logger.exception("failed to write metrics to %s", self.options.metrics_file)
