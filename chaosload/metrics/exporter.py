"""
Final CSV report: one table per percent, one column per latency.

Each table holds the latency quantiles and the success rate of the "all"
bucket, filled in test case by test case as snapshots come in.
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from chaosload.metrics.collector import QUANTILES, MetricsSnapshot
from chaosload.models import Verb

logger = logging.getLogger(__name__)

SUCCESS_RATE_ROW = "Success Rate"


class ReportExporter:
    """
    Accumulates per-test-case snapshots into the final matrix report.

    Example:
        exporter = ReportExporter(options.latencies, options.percents)
        exporter.collect(snapshot)
        path = exporter.write_to_folder("reports", workers=30, jobs_per_worker=100,
                                        started=start)
    """

    def __init__(
        self,
        latencies: Sequence[str],
        percents: Sequence[int],
        quantiles: Tuple[float, ...] = QUANTILES,
    ) -> None:
        self._latencies = list(latencies)
        self._percents = list(percents)
        self._quantiles = tuple(sorted(quantiles))
        # (percent, latency) -> (quantile cells, success rate cell)
        self._cells: Dict[Tuple[int, str], Tuple[List[str], str]] = {}

    def collect(self, snapshot: MetricsSnapshot) -> None:
        """Store the "all" quantiles and success rate of one test case."""
        case = snapshot.test_case
        if case.percent not in self._percents or case.latency not in self._latencies:
            raise ValueError(f"test case {case} is not part of this report")
        stats = snapshot[Verb.ALL]
        quantile_cells = [
            "" if stats.quantiles.get(q) is None else f"{stats.quantiles[q]:.10f}"
            for q in self._quantiles
        ]
        rate = "" if stats.success_rate is None else f"{stats.success_rate:.2f}%"
        self._cells[(case.percent, case.latency)] = (quantile_cells, rate)

    @property
    def collected(self) -> int:
        return len(self._cells)

    def header(self) -> List[str]:
        return ["Quantile"] + [
            f"Latency({latency[: -len('ms')]})" for latency in self._latencies
        ]

    def rows(self) -> List[List[str]]:
        """All CSV rows: title, header, quantile rows and success rate, per percent."""
        rows: List[List[str]] = []
        for percent in self._percents:
            rows.append([f"{percent}% sample"])
            rows.append(self.header())
            for index, quantile in enumerate(self._quantiles):
                row = [f"{int(round(quantile * 100))}%"]
                for latency in self._latencies:
                    cells = self._cells.get((percent, latency))
                    row.append(cells[0][index] if cells else "")
                rows.append(row)
            rate_row = [SUCCESS_RATE_ROW]
            for latency in self._latencies:
                cells = self._cells.get((percent, latency))
                rate_row.append(cells[1] if cells else "")
            rows.append(rate_row)
        return rows

    def export(self, path: Path) -> None:
        with open(path, "w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerows(self.rows())

    def write_to_folder(
        self,
        folder: str,
        *,
        workers: int,
        jobs_per_worker: int,
        started: datetime,
    ) -> Path:
        """
        Write the report as <start-datetime>_<workers>_<jobs>.csv.

        Returns:
            Path of the written file.
        """
        path = Path(folder or ".") / report_file_name(started, workers, jobs_per_worker)
        logger.info("writing final performance testing report to %s", path)
        self.export(path)
        logger.info("successfully wrote final performance testing report to %s", path)
        return path


def report_file_name(
    started: datetime, workers: int, jobs_per_worker: int, suffix: Optional[str] = ".csv"
) -> str:
    stamp = started.astimezone().strftime("%Y-%m-%d_%H-%M-%S")
    return f"{stamp}_{workers}_{jobs_per_worker}{suffix or ''}"
