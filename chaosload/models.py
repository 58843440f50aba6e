from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Sentinel for Worker.run: keep cycling until the run token is cancelled.
UNBOUNDED_JOBS = -1

APP_LABEL = "app"
WORKER_ID_LABEL = "workerId"
APP_NAME = "nginx"
APP_IMAGE = "nginx:1.14.2"


class Verb(str, Enum):
    """API request verbs recorded by workers."""

    CREATE = "create"
    GET = "get"
    UPDATE = "update"
    PATCH = "patch"
    LIST = "list"
    DELETE = "delete"
    ALL = "all"


# Order used by workers and by every report.
VERBS: Tuple[Verb, ...] = (
    Verb.CREATE,
    Verb.GET,
    Verb.UPDATE,
    Verb.PATCH,
    Verb.LIST,
    Verb.DELETE,
    Verb.ALL,
)


def latency_millis(latency: str) -> int:
    """Milliseconds in a latency label such as "20ms"."""
    return int(latency[: -len("ms")])


class ConditionPhase(str, Enum):
    """
    Phase of a single record tracked by a fault-injection condition.

    Chaos Mesh reports "Injected" once the fault is active for a target and
    "Not Injected" before that (or after recovery).
    """

    PENDING = "Not Injected"
    INJECTED = "Injected"
    FAILED = "Failed"

    @classmethod
    def parse(cls, value: object) -> "ConditionPhase":
        for phase in cls:
            if phase.value == value:
                return phase
        return cls.PENDING


@dataclass(frozen=True, order=True)
class TestCaseID:
    """
    One (latency, percent) cell of the test matrix.

    Attributes:
        latency: Latency label as passed to the condition (e.g. "20ms").
        percent: Percent of affected requests, 0..100.
    """

    __test__ = False

    latency: str
    percent: int

    def __str__(self) -> str:
        return f"({self.percent}%, {self.latency})"


@dataclass(frozen=True)
class WorkerLabels:
    """
    Typed label key identifying everything a single worker creates.

    The same key renders the labels stamped on new resources and the
    selector used to find them again during cleanup.
    """

    worker_id: int
    app: str = APP_NAME

    def as_dict(self) -> Dict[str, str]:
        return {APP_LABEL: self.app, WORKER_ID_LABEL: str(self.worker_id)}

    def selector(self) -> str:
        return ",".join(f"{key}={value}" for key, value in self.as_dict().items())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OperationRecord(BaseModel):
    """
    Outcome of a single API call made by a worker.

    Attributes:
        verb: Which CRUD operation was performed.
        success: Whether the API call returned without error.
        latency_seconds: Wall-clock duration of the call.
        test_case: Matrix cell the call was made under.
        worker_id: Worker that made the call (logs only, not a metric label).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    verb: Verb
    success: bool
    latency_seconds: float = Field(ge=0.0)
    test_case: TestCaseID
    worker_id: int = 0
