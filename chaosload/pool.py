"""
WorkerPool: fan out one thread per worker, fan back in at a barrier.

Both phases wait for every worker before returning. Exceptions escaping a
worker are collected and raised together as WorkerPoolError after the
barrier, so a failing worker never releases the caller early.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Sequence

from chaosload.cancellation import CancelToken
from chaosload.exceptions import WorkerPoolError
from chaosload.models import TestCaseID
from chaosload.worker import Worker

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs the same phase on every worker concurrently."""

    def __init__(self, workers: Sequence[Worker]) -> None:
        if not workers:
            raise ValueError("a worker pool needs at least one worker")
        self._workers = list(workers)

    @property
    def workers(self) -> List[Worker]:
        return list(self._workers)

    def __len__(self) -> int:
        return len(self._workers)

    def run_all(self, token: CancelToken, jobs: int, case: TestCaseID) -> None:
        """Every worker runs its CRUD cycles; returns once all have finished."""
        logger.debug("performance testing has started")
        self._fan_out("run", lambda w: w.run(token, jobs, case))
        logger.debug("performance testing complete!")

    def cleanup_all(self, token: CancelToken) -> None:
        """Every worker deletes its leftovers; returns once all have finished."""
        logger.debug("cleanup has started")
        self._fan_out("cleanup", lambda w: w.cleanup(token))
        logger.debug("cleanup complete!")

    def _fan_out(self, phase: str, task: Callable[[Worker], None]) -> None:
        with ThreadPoolExecutor(
            max_workers=len(self._workers), thread_name_prefix=f"chaosload-{phase}-"
        ) as executor:
            futures: List[Future] = [executor.submit(task, w) for w in self._workers]
            logger.debug(
                "waiting for %d workers to complete %s... work! work!", len(futures), phase
            )
            wait(futures)

        failures = []
        for worker, future in zip(self._workers, futures):
            exc = future.exception()
            if exc is not None:
                logger.error("[worker %s] has stopped %s due to error: %r", worker.id, phase, exc)
                failures.append(exc)
        if failures:
            raise WorkerPoolError(phase, failures)
