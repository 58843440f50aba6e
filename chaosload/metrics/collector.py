"""
MetricsAggregator: per (verb, test case) API request counters and latency quantiles.

Thread-safe, in-memory collection with Prometheus-compatible export. Every
record lands in its verb bucket and in the "all" bucket under one lock, so a
snapshot never sees the roll-up out of step with the per-verb series.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from chaosload.models import VERBS, OperationRecord, TestCaseID, Verb, latency_millis

LATENCY_BUCKETS_SECONDS: Tuple[float, ...] = (
    0.001,
    0.0025,
    0.005,
    0.0075,
    0.01,
    0.015,
    0.02,
    0.03,
    0.05,
    0.075,
    0.1,
    0.15,
    0.2,
    0.3,
    0.5,
    0.75,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
)

QUANTILES: Tuple[float, ...] = (0.1, 0.25, 0.5, 0.75, 0.9, 0.95, 0.99)


class _HistogramValue:
    """Thread-safe histogram with configurable buckets."""

    def __init__(self, buckets: Tuple[float, ...]) -> None:
        self._buckets = tuple(sorted(buckets)) + (float("inf"),)
        self._counts = [0] * len(self._buckets)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    self._counts[i] += 1
                    break

    def get(self) -> Dict[str, Any]:
        with self._lock:
            bucket_data = []
            cumulative = 0
            for i, bound in enumerate(self._buckets):
                cumulative += self._counts[i]
                if bound != float("inf"):
                    bucket_data.append((bound, cumulative))
            return {
                "buckets": bucket_data,
                "sum": self._sum,
                "count": self._count,
            }

    def percentile(self, p: float) -> Optional[float]:
        """Estimate the p-th percentile (0..100) by linear interpolation in a bucket."""
        with self._lock:
            if self._count == 0:
                return None

            target = self._count * (p / 100.0)
            cumulative = 0

            for i, bound in enumerate(self._buckets):
                cumulative += self._counts[i]
                if cumulative >= target and self._counts[i] > 0:
                    prev_cumulative = cumulative - self._counts[i]
                    prev_bound = 0.0 if i == 0 else self._buckets[i - 1]
                    if bound == float("inf"):
                        return prev_bound
                    ratio = (target - prev_cumulative) / self._counts[i]
                    return prev_bound + ratio * (bound - prev_bound)

            return self._buckets[-2] if len(self._buckets) > 1 else None

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum


class _CounterValue:
    """Thread-safe counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def get(self) -> int:
        with self._lock:
            return self._value


class _Series:
    """Total/successful counters and the latency histogram of one (verb, test case)."""

    def __init__(self, buckets: Tuple[float, ...]) -> None:
        self.total = _CounterValue()
        self.successful = _CounterValue()
        self.latency = _HistogramValue(buckets)

    def observe(self, success: bool, latency_seconds: float) -> None:
        self.total.inc()
        if success:
            self.successful.inc()
        self.latency.observe(latency_seconds)


@dataclass(frozen=True)
class VerbStats:
    """
    Snapshot of one verb within one test case.

    Attributes:
        verb: The verb, or Verb.ALL for the roll-up.
        total: Requests recorded.
        successful: Requests that returned without error.
        mean_seconds: Mean latency, None without data.
        quantiles: Quantile (0..1) -> estimated latency in seconds.
    """

    verb: Verb
    total: int
    successful: int
    mean_seconds: Optional[float]
    quantiles: Dict[float, Optional[float]] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def success_rate(self) -> Optional[float]:
        """Percentage of successful requests, None when nothing was recorded."""
        if self.total == 0:
            return None
        return self.successful * 100.0 / self.total


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time view of every verb for a single test case."""

    test_case: TestCaseID
    verbs: Dict[Verb, VerbStats]

    def __getitem__(self, verb: Verb) -> VerbStats:
        return self.verbs[verb]


class MetricsAggregator:
    """
    Collects API request outcomes keyed by (verb, test case).

    Thread-safe, in-memory. Workers call observe() (or record()) after each
    API call; the orchestrator calls snapshot() once per test case.

    Example:
        metrics = MetricsAggregator()
        metrics.record(Verb.CREATE, case, success=True, latency_seconds=0.012)
        stats = metrics.snapshot(case)
        print(stats[Verb.ALL].quantiles[0.99])
    """

    def __init__(
        self,
        buckets: Tuple[float, ...] = LATENCY_BUCKETS_SECONDS,
        quantiles: Tuple[float, ...] = QUANTILES,
    ) -> None:
        self._buckets = buckets
        self._quantiles = tuple(sorted(quantiles))
        self._series: Dict[Tuple[Verb, TestCaseID], _Series] = {}
        self._test_cases: List[TestCaseID] = []
        self._lock = threading.Lock()

    @property
    def quantiles(self) -> Tuple[float, ...]:
        return self._quantiles

    def _series_for(self, verb: Verb, test_case: TestCaseID) -> _Series:
        key = (verb, test_case)
        series = self._series.get(key)
        if series is None:
            series = _Series(self._buckets)
            self._series[key] = series
            if test_case not in self._test_cases:
                self._test_cases.append(test_case)
        return series

    def observe(self, record: OperationRecord) -> None:
        """
        Record a completed API call under its verb and under Verb.ALL.

        Args:
            record: OperationRecord from a worker.
        """
        if record.verb == Verb.ALL:
            raise ValueError("records must carry a concrete verb, not 'all'")
        with self._lock:
            self._series_for(record.verb, record.test_case).observe(
                record.success, record.latency_seconds
            )
            self._series_for(Verb.ALL, record.test_case).observe(
                record.success, record.latency_seconds
            )

    def record(
        self,
        verb: Verb,
        test_case: TestCaseID,
        success: bool,
        latency_seconds: float,
    ) -> None:
        self.observe(
            OperationRecord(
                verb=verb,
                success=success,
                latency_seconds=latency_seconds,
                test_case=test_case,
            )
        )

    def test_cases(self) -> List[TestCaseID]:
        """Test cases with at least one record, in first-seen order."""
        with self._lock:
            return list(self._test_cases)

    def _stats(self, verb: Verb, series: Optional[_Series]) -> VerbStats:
        if series is None:
            return VerbStats(
                verb=verb,
                total=0,
                successful=0,
                mean_seconds=None,
                quantiles={q: None for q in self._quantiles},
            )
        count = series.latency.count
        return VerbStats(
            verb=verb,
            total=series.total.get(),
            successful=series.successful.get(),
            mean_seconds=series.latency.sum / count if count > 0 else None,
            quantiles={q: series.latency.percentile(q * 100) for q in self._quantiles},
        )

    def snapshot(self, test_case: TestCaseID) -> MetricsSnapshot:
        """
        Get every verb's counters and quantiles for one test case.

        Verbs without records are present with zero counts.
        """
        with self._lock:
            verbs = {
                verb: self._stats(verb, self._series.get((verb, test_case)))
                for verb in VERBS
            }
        return MetricsSnapshot(test_case=test_case, verbs=verbs)

    def prometheus_format(self) -> str:
        """
        Export all series in Prometheus text exposition format.

        Returns:
            String suitable for a textfile collector or a /metrics endpoint.
        """
        with self._lock:
            items = sorted(
                self._series.items(),
                key=lambda kv: (
                    kv[0][1].percent,
                    latency_millis(kv[0][1].latency),
                    VERBS.index(kv[0][0]),
                ),
            )

        lines = []
        lines.append(
            "# HELP chaosload_api_requests_total Total API requests sent by workers"
        )
        lines.append("# TYPE chaosload_api_requests_total counter")
        for (verb, case), series in items:
            lines.append(
                f"chaosload_api_requests_total{{{_labels(verb, case)}}} {series.total.get()}"
            )

        lines.append("")
        lines.append(
            "# HELP chaosload_api_requests_successful_total API requests that returned without error"
        )
        lines.append("# TYPE chaosload_api_requests_successful_total counter")
        for (verb, case), series in items:
            lines.append(
                f"chaosload_api_requests_successful_total{{{_labels(verb, case)}}} "
                f"{series.successful.get()}"
            )

        name = "chaosload_api_request_latency_seconds"
        lines.append("")
        lines.append(f"# HELP {name} Distribution of API request latency in seconds")
        lines.append(f"# TYPE {name} histogram")
        for (verb, case), series in items:
            labels = _labels(verb, case)
            data = series.latency.get()
            for le, count in data["buckets"]:
                lines.append(f'{name}_bucket{{{labels},le="{le}"}} {count}')
            lines.append(f'{name}_bucket{{{labels},le="+Inf"}} {data["count"]}')
            lines.append(f"{name}_sum{{{labels}}} {data['sum']}")
            lines.append(f"{name}_count{{{labels}}} {data['count']}")

        return "\n".join(lines)


def _labels(verb: Verb, case: TestCaseID) -> str:
    return f'verb="{verb.value}",latency="{case.latency}",percent="{case.percent}"'
