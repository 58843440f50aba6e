"""
API request metrics for chaos test runs.

Provides:
- MetricsAggregator: Concurrent sink keyed by (verb, test case), with snapshots
- format_summary: Console tables for one test case
- ReportExporter: CSV report across the whole test matrix
- Prometheus text export of every recorded series

Usage:
    from chaosload.metrics import MetricsAggregator, format_summary

    metrics = MetricsAggregator()
    metrics.record(Verb.GET, case, success=True, latency_seconds=0.004)
    print(format_summary(metrics.snapshot(case), 2, 3, started, finished))
"""

from chaosload.metrics.collector import (
    LATENCY_BUCKETS_SECONDS,
    QUANTILES,
    MetricsAggregator,
    MetricsSnapshot,
    VerbStats,
)
from chaosload.metrics.exporter import ReportExporter, report_file_name
from chaosload.metrics.summary import format_summary

__all__ = [
    "LATENCY_BUCKETS_SECONDS",
    "QUANTILES",
    "MetricsAggregator",
    "MetricsSnapshot",
    "VerbStats",
    "ReportExporter",
    "report_file_name",
    "format_summary",
]
