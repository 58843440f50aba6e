"""
Human-readable per-test-case summary.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from chaosload.metrics.collector import MetricsSnapshot
from chaosload.models import VERBS

_COL = 15


def format_summary(
    snapshot: MetricsSnapshot,
    workers: int,
    jobs_per_worker: int,
    started: datetime,
    finished: datetime,
) -> str:
    """
    Format one test case's snapshot as two tables: success rate and latency.

    Args:
        snapshot: Snapshot taken right after the run phase.
        workers: Number of workers that ran.
        jobs_per_worker: Cycles per worker (-1 for unbounded).
        started: When the run phase started.
        finished: When the run phase finished.

    Returns:
        Formatted string suitable for printing.
    """
    case = snapshot.test_case
    jobs = "unbounded" if jobs_per_worker < 0 else str(jobs_per_worker)
    quantiles = sorted(next(iter(snapshot.verbs.values())).quantiles)

    lines = []
    width = _COL * 4 + 5
    lines.append("=" * width)
    lines.append("Performance Testing Summary".center(width))
    lines.append("=" * width)
    lines.append(f"Latency: {case.latency}")
    lines.append(f"Percent: {case.percent}")
    lines.append(f"Total number of workers: {workers}")
    lines.append(f"Jobs done per worker: {jobs}")
    lines.append("")

    lines.extend(
        _table(
            "API Request Success Rate",
            ["VERB", "TOTAL", "SUCCESSFUL", "PERCENTAGE"],
            [
                [
                    verb.value.upper(),
                    str(snapshot[verb].total),
                    str(snapshot[verb].successful),
                    _fmt(snapshot[verb].success_rate, 2),
                ]
                for verb in VERBS
            ],
        )
    )
    lines.append("")

    lines.extend(
        _table(
            "API Request Latency (seconds)",
            ["VERB"] + [f"P{int(round(q * 100))}" for q in quantiles],
            [
                [verb.value.upper()]
                + [_fmt(snapshot[verb].quantiles.get(q), 5) for q in quantiles]
                for verb in VERBS
            ],
        )
    )
    lines.append("")

    lines.append(f"   Start time: {started.astimezone().isoformat(sep=' ')}")
    lines.append(f"     End time: {finished.astimezone().isoformat(sep=' ')}")
    lines.append(f"Test duration: {finished - started}")
    return "\n".join(lines)


def _table(title: str, header: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    divider = "+" + "+".join("-" * _COL for _ in header) + "+"
    width = len(divider)
    lines = [
        divider,
        "|" + title.center(width - 2) + "|",
        divider,
        "|" + "|".join(cell.rjust(_COL) for cell in header) + "|",
        divider,
    ]
    for row in rows:
        lines.append("|" + "|".join(cell.rjust(_COL) for cell in row) + "|")
    lines.append(divider)
    return lines


def _fmt(val: Optional[float], decimals: int = 1) -> str:
    """Format a value, handling None."""
    if val is None:
        return "N/A"
    return f"{val:.{decimals}f}"
