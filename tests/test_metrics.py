"""Tests for MetricsAggregator: roll-up, quantiles, snapshots and export."""

import threading

import pytest

from chaosload.metrics import QUANTILES, MetricsAggregator
from chaosload.models import VERBS, OperationRecord, TestCaseID, Verb

CASE = TestCaseID("20ms", 10)
OTHER = TestCaseID("0ms", 50)


class TestRecording:
    def test_all_bucket_rolls_up_every_verb(self):
        metrics = MetricsAggregator()
        metrics.record(Verb.CREATE, CASE, True, 0.004)
        metrics.record(Verb.GET, CASE, False, 0.002)
        metrics.record(Verb.DELETE, CASE, True, 0.02)

        snap = metrics.snapshot(CASE)
        assert snap[Verb.ALL].total == 3
        assert snap[Verb.ALL].successful == 2
        assert snap[Verb.GET].failed == 1
        per_verb = sum(snap[v].total for v in VERBS if v is not Verb.ALL)
        assert per_verb == snap[Verb.ALL].total

    def test_observe_rejects_all_verb(self):
        metrics = MetricsAggregator()
        record = OperationRecord(
            verb=Verb.ALL, success=True, latency_seconds=0.1, test_case=CASE
        )
        with pytest.raises(ValueError):
            metrics.observe(record)

    def test_test_cases_are_isolated(self):
        metrics = MetricsAggregator()
        metrics.record(Verb.LIST, CASE, True, 0.01)
        metrics.record(Verb.LIST, OTHER, True, 0.01)
        metrics.record(Verb.LIST, OTHER, True, 0.01)

        assert metrics.snapshot(CASE)[Verb.LIST].total == 1
        assert metrics.snapshot(OTHER)[Verb.LIST].total == 2
        assert metrics.test_cases() == [CASE, OTHER]

    def test_concurrent_records_are_not_lost(self):
        metrics = MetricsAggregator()

        def work():
            for _ in range(500):
                metrics.record(Verb.GET, CASE, True, 0.001)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = metrics.snapshot(CASE)
        assert snap[Verb.GET].total == 4000
        assert snap[Verb.ALL].total == 4000


class TestSnapshot:
    def test_missing_verbs_are_zero(self):
        metrics = MetricsAggregator()
        metrics.record(Verb.CREATE, CASE, True, 0.01)
        snap = metrics.snapshot(CASE)

        assert set(snap.verbs) == set(VERBS)
        assert snap[Verb.PATCH].total == 0
        assert snap[Verb.PATCH].success_rate is None
        assert snap[Verb.PATCH].mean_seconds is None
        assert all(v is None for v in snap[Verb.PATCH].quantiles.values())

    def test_success_rate_is_percentage(self):
        metrics = MetricsAggregator()
        for success in (True, True, True, False):
            metrics.record(Verb.UPDATE, CASE, success, 0.01)
        assert metrics.snapshot(CASE)[Verb.UPDATE].success_rate == pytest.approx(75.0)

    def test_quantiles_interpolate_within_bucket(self):
        metrics = MetricsAggregator()
        metrics.record(Verb.GET, CASE, True, 0.004)
        stats = metrics.snapshot(CASE)[Verb.GET]

        assert set(stats.quantiles) == set(QUANTILES)
        # Single sample in (0.0025, 0.005].
        assert stats.quantiles[0.5] == pytest.approx(0.00375)
        assert stats.mean_seconds == pytest.approx(0.004)

    def test_quantiles_are_monotonic(self):
        metrics = MetricsAggregator()
        for latency in (0.001, 0.003, 0.008, 0.02, 0.04, 0.09, 0.3, 0.6, 1.5, 4.0):
            metrics.record(Verb.LIST, CASE, True, latency)
        values = [metrics.snapshot(CASE)[Verb.LIST].quantiles[q] for q in QUANTILES]
        assert values == sorted(values)

    def test_values_beyond_last_bucket(self):
        metrics = MetricsAggregator(buckets=(0.1, 1.0))
        metrics.record(Verb.GET, CASE, True, 5.0)
        assert metrics.snapshot(CASE)[Verb.GET].quantiles[0.99] == pytest.approx(1.0)


def test_prometheus_format():
    metrics = MetricsAggregator(buckets=(0.01, 0.1))
    metrics.record(Verb.GET, CASE, True, 0.005)
    metrics.record(Verb.GET, CASE, False, 0.05)

    text = metrics.prometheus_format()
    labels = 'verb="get",latency="20ms",percent="10"'
    assert "# TYPE chaosload_api_requests_total counter" in text
    assert f"chaosload_api_requests_total{{{labels}}} 2" in text
    assert f"chaosload_api_requests_successful_total{{{labels}}} 1" in text
    assert f'chaosload_api_request_latency_seconds_bucket{{{labels},le="0.01"}} 1' in text
    assert f'chaosload_api_request_latency_seconds_bucket{{{labels},le="0.1"}} 2' in text
    assert f'chaosload_api_request_latency_seconds_bucket{{{labels},le="+Inf"}} 2' in text
    assert f"chaosload_api_request_latency_seconds_count{{{labels}}} 2" in text
    assert 'verb="all"' in text


def test_prometheus_orders_latencies_numerically():
    metrics = MetricsAggregator()
    metrics.record(Verb.GET, TestCaseID("100ms", 10), True, 0.01)
    metrics.record(Verb.GET, TestCaseID("20ms", 10), True, 0.01)

    text = metrics.prometheus_format()
    assert text.index('latency="20ms"') < text.index('latency="100ms"')
