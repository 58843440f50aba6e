"""
Typed exceptions for chaosload.

Provides structured error handling with:
- ChaosloadError: Base exception for all chaosload errors
- ChaosloadConfigError: Invalid options or condition template
- ApiError: Non-success response from a Kubernetes-style API
- ConditionError: Fault-injection condition could not be created or deleted
- WorkerPoolError: At least one worker task failed behind the barrier
- TestFlowError: Fatal-to-matrix failure of a single test case

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import httpx


class ChaosloadError(Exception):
    """Base exception for all chaosload errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or reports."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ChaosloadConfigError(ChaosloadError):
    """Configuration or validation error.

    Raised when:
    - The condition template is missing, unreadable or malformed
    - A kubeconfig cannot be resolved into a connection
    """

    pass


class ApiError(ChaosloadError):
    """Error response from the resource or condition API.

    Attributes:
        status_code: HTTP status code of the response
        reason: Kubernetes Status reason (e.g. "AlreadyExists"), if present
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if status_code:
            details["status_code"] = status_code
        if reason:
            details["reason"] = reason

        self.status_code = status_code
        self.reason = reason

        super().__init__(message, code=code, details=details)

    @property
    def is_transient(self) -> bool:
        """True for throttling and server-side failures."""
        return self.status_code is not None and (
            self.status_code == 429 or self.status_code >= 500
        )


class AlreadyExistsError(ApiError):
    """The object being created already exists (HTTP 409)."""

    pass


class NotFoundError(ApiError):
    """The object does not exist (HTTP 404)."""

    pass


class ConditionError(ChaosloadError):
    """Fault-injection condition could not reach the desired state.

    Attributes:
        condition: namespace/name of the condition object
    """

    def __init__(
        self,
        message: str,
        *,
        condition: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if condition:
            details["condition"] = condition

        self.condition = condition

        super().__init__(message, code=code, details=details)


class ConditionTimeoutError(ConditionError):
    """Polling deadline elapsed before the condition reached the desired state."""

    pass


class WorkerPoolError(ChaosloadError):
    """One or more worker tasks raised behind the barrier.

    Attributes:
        phase: "run" or "cleanup"
        failures: All exceptions raised, in worker order
    """

    def __init__(self, phase: str, failures: Sequence[BaseException]) -> None:
        self.phase = phase
        self.failures = list(failures)
        first = self.failures[0] if self.failures else None
        super().__init__(
            f"{len(self.failures)} worker(s) failed during {phase}: {first!r}",
            details={"phase": phase, "failures": len(self.failures)},
        )

    @property
    def first_error(self) -> Optional[BaseException]:
        return self.failures[0] if self.failures else None


class TestFlowError(ChaosloadError):
    """A test case failed in a way that aborts the whole matrix.

    The underlying ConditionError is available as ``__cause__``.
    """

    __test__ = False

    def __init__(self, message: str, *, latency: str, percent: int) -> None:
        self.latency = latency
        self.percent = percent
        super().__init__(message, details={"latency": latency, "percent": percent})


def is_transient(exc: BaseException) -> bool:
    """Check whether an error is worth retrying (network, 429, 5xx)."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, ApiError):
        return exc.is_transient
    return False


__all__ = [
    "ChaosloadError",
    "ChaosloadConfigError",
    "ApiError",
    "AlreadyExistsError",
    "NotFoundError",
    "ConditionError",
    "ConditionTimeoutError",
    "WorkerPoolError",
    "TestFlowError",
    "is_transient",
]
