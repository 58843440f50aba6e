"""
Two-stage cancellation for a test-flow run.

The first SIGINT/SIGTERM cancels the run token: workers finish the cycle they
are in, start no new one, and the orchestrator moves on to teardown. Teardown
only ever watches the process token, which stays live until a second signal
arrives. The second signal cancels the process token and terminates the
process immediately with EXIT_FORCED.

Usage:
    signals = ShutdownSignals()
    signals.install()
    flow.run(run_token=signals.run, process_token=signals.process)
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

# Exit code reserved for forced termination on the second stop signal.
EXIT_FORCED = 130

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancelToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self, name: str = "token") -> None:
        self.name = name
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Sleep up to timeout seconds, waking early on cancellation.

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancelToken({self.name!r}, cancelled={self.cancelled})"


class ShutdownSignals:
    """
    Owns the run and process tokens and the two-stage signal handler.

    Only one instance may be installed per process, since a process has a
    single handler per signal.
    """

    _installed = False
    _install_lock = threading.Lock()

    def __init__(
        self,
        *,
        exit_code: int = EXIT_FORCED,
        exit_func: Callable[[int], None] = os._exit,
    ) -> None:
        self.run = CancelToken("run")
        self.process = CancelToken("process")
        self._exit_code = exit_code
        self._exit_func = exit_func
        self._received = 0
        self._lock = threading.Lock()

    @property
    def received(self) -> int:
        with self._lock:
            return self._received

    def handle(self, signum: int, frame: object = None) -> None:
        with self._lock:
            self._received += 1
            count = self._received

        name = _signal_name(signum)
        if count == 1:
            logger.warning(
                "signal %s received, finishing in-flight work and cleaning up "
                "(send again to force exit)",
                name,
            )
            self.run.cancel()
            return

        logger.warning("signal %s received again, forcefully shutting down", name)
        self.run.cancel()
        self.process.cancel()
        self._exit_func(self._exit_code)

    def install(self, signals: Iterable[int] = SHUTDOWN_SIGNALS) -> None:
        with ShutdownSignals._install_lock:
            if ShutdownSignals._installed:
                raise RuntimeError("shutdown signal handler is already installed")
            ShutdownSignals._installed = True
        for signum in signals:
            signal.signal(signum, self.handle)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
