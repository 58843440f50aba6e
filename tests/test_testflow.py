"""End-to-end tests for the test-flow orchestrator against the in-memory cluster."""

from dataclasses import dataclass, field
from typing import List, Tuple

import pytest

import chaosload.retry as retry_module
from chaosload.cancellation import CancelToken
from chaosload.condition import ConditionAgent
from chaosload.config import TestFlowOptions
from chaosload.exceptions import ApiError, ConditionError, ConditionTimeoutError, TestFlowError
from chaosload.metrics import MetricsAggregator
from chaosload.models import TestCaseID, Verb, WorkerLabels
from chaosload.pool import WorkerPool
from chaosload.testflow import Phase, TestFlow
from chaosload.worker import Worker, deployment_manifest
from tests.fakes import FakeClock, FakeConditionClient, FakeResourceClient

TEMPLATE = {
    "apiVersion": "chaos-mesh.org/v1alpha1",
    "kind": "IOChaos",
    "metadata": {"name": "io-latency"},
    "spec": {"action": "latency", "mode": "all"},
}

CASE_PHASES = [
    Phase.PRE_CLEANUP,
    Phase.CONDITION_CREATE,
    Phase.RUN,
    Phase.SNAPSHOT,
    Phase.DRAIN,
    Phase.CONDITION_DELETE,
    Phase.POST_CLEANUP,
    Phase.DONE,
]


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(retry_module.time, "sleep", lambda _d: None)


@dataclass
class Harness:
    flow: TestFlow
    condition: FakeConditionClient
    deployments: FakeResourceClient
    pods: FakeResourceClient
    metrics: MetricsAggregator
    workers: List[Worker]
    run_token: CancelToken = field(default_factory=lambda: CancelToken("run"))
    process_token: CancelToken = field(default_factory=lambda: CancelToken("process"))
    phases: List[Tuple[TestCaseID, Phase]] = field(default_factory=list)
    output: List[str] = field(default_factory=list)

    def run(self):
        return self.flow.run(self.run_token, self.process_token)

    def phases_of(self, case):
        return [phase for c, phase in self.phases if c == case]


def make_harness(condition=None, **overrides):
    values = dict(
        workers=2,
        jobs_per_worker=3,
        latencies="0ms,20ms",
        percents="10,50",
        drain_seconds=0,
        summarize=False,
        retry_attempts=2,
    )
    values.update(overrides)
    options = TestFlowOptions(**values)

    condition = condition or FakeConditionClient()
    clock = FakeClock()
    agent = ConditionAgent(
        condition,
        TEMPLATE,
        poll_interval=1.0,
        poll_timeout=5.0,
        retry_attempts=options.retry_attempts,
        clock=clock,
        sleep=clock.sleep,
    )
    deployments = FakeResourceClient("deployments")
    pods = FakeResourceClient("pods")
    metrics = MetricsAggregator()
    workers = [Worker(i, deployments, pods, metrics) for i in range(options.workers)]

    harness = Harness(
        flow=None,
        condition=condition,
        deployments=deployments,
        pods=pods,
        metrics=metrics,
        workers=workers,
    )
    harness.flow = TestFlow(
        options,
        agent,
        WorkerPool(workers),
        metrics,
        output=harness.output.append,
        on_phase=lambda case, phase: harness.phases.append((case, phase)),
    )
    return harness


class TestMatrix:
    def test_cases_run_in_order_with_expected_creates(self):
        h = make_harness()

        results = h.run()

        expected = [
            TestCaseID("0ms", 10),
            TestCaseID("20ms", 10),
            TestCaseID("0ms", 50),
            TestCaseID("20ms", 50),
        ]
        assert [r.test_case for r in results] == expected
        assert [c for c, phase in h.phases if phase == Phase.PRE_CLEANUP] == expected
        for case, result in zip(expected, results):
            assert h.phases_of(case) == CASE_PHASES
            assert result.snapshot[Verb.CREATE].total == 6
            assert result.snapshot[Verb.CREATE].successful == 6
            assert result.run_error is None

    def test_condition_carries_case_parameters(self):
        h = make_harness()
        h.run()

        applied = [(c["spec"]["delay"], c["spec"]["percent"]) for c in h.condition.created]
        assert applied == [("0ms", 10), ("20ms", 10), ("0ms", 50), ("20ms", 50)]
        assert h.condition.objects == {}

    def test_no_worker_objects_left_after_each_case(self):
        h = make_harness()
        h.run()

        for worker in h.workers:
            assert h.deployments.list("default", worker.labels.selector()) == []
            assert h.pods.list("default", worker.labels.selector()) == []

    def test_pre_cleanup_removes_leftovers_before_condition(self):
        h = make_harness(latencies="0ms", percents="10")
        h.deployments.seed("default", deployment_manifest("stale", WorkerLabels(1)))
        seen = []
        h.flow._on_phase = lambda case, phase: (
            seen.append(h.deployments.names()) if phase == Phase.CONDITION_CREATE else None
        )

        h.run()

        assert seen == [[]]

    def test_all_equals_sum_of_verbs(self):
        h = make_harness(latencies="0ms", percents="10")
        result = h.run()[0]

        per_verb = sum(
            result.snapshot[v].total
            for v in (Verb.CREATE, Verb.GET, Verb.UPDATE, Verb.PATCH, Verb.LIST, Verb.DELETE)
        )
        assert result.snapshot[Verb.ALL].total == per_verb == 36
        assert result.snapshot[Verb.ALL].total >= result.snapshot[Verb.ALL].successful


class TestConditionFailures:
    def test_condition_timeout_skips_run_and_aborts_matrix(self):
        h = make_harness(condition=FakeConditionClient(inject_after=None))

        with pytest.raises(TestFlowError) as excinfo:
            h.run()

        first = TestCaseID("0ms", 10)
        assert isinstance(excinfo.value.__cause__, ConditionTimeoutError)
        assert excinfo.value.latency == "0ms"
        assert excinfo.value.percent == 10
        assert h.phases_of(first) == [
            Phase.PRE_CLEANUP,
            Phase.CONDITION_CREATE,
            Phase.CONDITION_DELETE,
            Phase.POST_CLEANUP,
        ]
        assert {c for c, _ in h.phases} == {first}
        assert h.deployments.count("create") == 0
        assert h.condition.objects == {}

    def test_delete_failure_after_create_failure_is_chained(self):
        condition = FakeConditionClient()
        condition.fail_always("create", ApiError("forbidden", status_code=403))
        condition.fail_always("delete", ApiError("forbidden", status_code=403))
        h = make_harness(condition=condition)

        with pytest.raises(TestFlowError) as excinfo:
            h.run()

        delete_error = excinfo.value.__cause__
        assert isinstance(delete_error, ConditionError)
        assert "deleting" in delete_error.message
        assert isinstance(delete_error.__cause__, ConditionError)
        assert "creating" in delete_error.__cause__.message
        assert "deleting" in str(excinfo.value)
        assert "creating" in str(excinfo.value)
        assert Phase.POST_CLEANUP in h.phases_of(TestCaseID("0ms", 10))

    def test_delete_failure_alone_aborts_after_cleanup(self):
        condition = FakeConditionClient()
        condition.fail_always("delete", ApiError("forbidden", status_code=403))
        h = make_harness(condition=condition)

        with pytest.raises(TestFlowError) as excinfo:
            h.run()

        first = TestCaseID("0ms", 10)
        assert isinstance(excinfo.value.__cause__, ConditionError)
        assert excinfo.value.__cause__.__cause__ is not None
        assert h.phases_of(first)[-1] == Phase.POST_CLEANUP
        assert [r.test_case for r in h.flow.results] == [first]

    def test_report_written_for_completed_cases_on_abort(self, tmp_path):
        h = make_harness(export_to_csv=True, export_folder=str(tmp_path))

        def fail_second(case, phase):
            h.phases.append((case, phase))
            if phase == Phase.DONE:
                h.condition.fail_always("create", ApiError("forbidden", status_code=403))

        h.flow._on_phase = fail_second

        with pytest.raises(TestFlowError):
            h.run()

        reports = list(tmp_path.glob("*_2_3.csv"))
        assert len(reports) == 1
        assert "10% sample" in reports[0].read_text(encoding="utf-8")


class TestCancellation:
    def test_single_stop_signal_finishes_one_teardown(self):
        h = make_harness(jobs_per_worker=-1)
        original_create = h.deployments.create

        def create_then_stop(namespace, obj):
            if h.deployments.count("create") >= 5:
                h.run_token.cancel()
            return original_create(namespace, obj)

        h.deployments.create = create_then_stop

        results = h.run()

        first = TestCaseID("0ms", 10)
        assert [r.test_case for r in results] == [first]
        assert [phase for _, phase in h.phases].count(Phase.CONDITION_DELETE) == 1
        assert h.phases_of(first) == CASE_PHASES
        assert h.condition.objects == {}
        assert h.deployments.names() == []

    def test_cancelled_before_start_runs_nothing(self):
        h = make_harness()
        h.run_token.cancel()

        assert h.run() == []
        assert h.phases == []
        assert h.condition.count("create") == 0

    def test_drain_wakes_on_process_token(self):
        h = make_harness(latencies="0ms", percents="10", drain_seconds=3600)
        h.process_token.cancel()

        results = h.run()

        assert len(results) == 1


class TestWorkerFailures:
    def test_worker_crash_is_not_fatal(self):
        h = make_harness(latencies="0ms", percents="10")
        crash = RuntimeError("worker crashed")

        def broken_run(token, jobs, case):
            raise crash

        h.workers[0].run = broken_run

        results = h.run()

        assert results[0].run_error is not None
        assert results[0].run_error.first_error is crash
        # The healthy worker still did its cycles.
        assert results[0].snapshot[Verb.CREATE].total == 3


class TestReporting:
    def test_summary_printed_per_case(self):
        h = make_harness(summarize=True)
        h.run()

        assert len(h.output) == 4
        assert "Latency: 0ms" in h.output[0]
        assert "Percent: 50" in h.output[3]

    def test_summary_failure_is_logged_not_raised(self, caplog):
        h = make_harness(summarize=True, latencies="0ms", percents="10")

        def broken_output(_text):
            raise OSError("stdout closed")

        h.flow._output = broken_output

        assert len(h.run()) == 1
        assert "failed to print summary" in caplog.text

    def test_csv_and_metrics_file(self, tmp_path):
        metrics_file = tmp_path / "metrics.prom"
        h = make_harness(
            export_to_csv=True,
            export_folder=str(tmp_path),
            metrics_file=str(metrics_file),
        )
        h.run()

        reports = list(tmp_path.glob("*_2_3.csv"))
        assert len(reports) == 1
        text = reports[0].read_text(encoding="utf-8")
        assert "10% sample" in text
        assert "50% sample" in text
        assert "Latency(0),Latency(20)" in text
        assert "100.00%" in text
        assert "chaosload_api_requests_total" in metrics_file.read_text(encoding="utf-8")
