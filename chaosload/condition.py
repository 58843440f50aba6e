"""
Fault-injection condition lifecycle.

The ConditionAgent instantiates a Chaos Mesh IOChaos object per test case from
a template, creates it and waits until every tracked record reports
"Injected", then deletes it and waits until it is gone. Submission errors that
look transient are retried with bounded backoff. "Already exists" on create
and "not found" on delete mean the desired state is already reached.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List

import yaml

from chaosload.clients.base import ApiObject, ConditionClient
from chaosload.exceptions import (
    AlreadyExistsError,
    ChaosloadConfigError,
    ConditionError,
    ConditionTimeoutError,
    NotFoundError,
)
from chaosload.models import ConditionPhase
from chaosload.retry import retry_call

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionSpec:
    """
    A condition object for one test case.

    Attributes:
        name: metadata.name of the object.
        namespace: metadata.namespace of the object.
        delay: Added latency label (spec.delay).
        percent: Percent of affected operations (spec.percent).
        body: Full object as submitted to the API.
    """

    name: str
    namespace: str
    delay: str
    percent: int
    body: ApiObject

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


def load_template(path: str) -> ApiObject:
    """
    Read a condition template from a YAML or JSON file.

    Raises:
        ChaosloadConfigError: File missing, unparsable or lacking name/spec.
    """
    if not path:
        raise ChaosloadConfigError(
            "a condition template file is required", code="missing_template"
        )
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ChaosloadConfigError(
            f"cannot read condition template {path}: {exc}", details={"path": path}
        ) from exc

    try:
        if path.endswith(".json"):
            template = json.loads(text)
        else:
            template = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise ChaosloadConfigError(
            f"cannot parse condition template {path}: {exc}", details={"path": path}
        ) from exc

    return validate_template(template, source=path)


def validate_template(template: Any, *, source: str = "template") -> ApiObject:
    if not isinstance(template, dict):
        raise ChaosloadConfigError(f"condition template {source} is not a mapping")
    kind = template.get("kind", "IOChaos")
    if kind != "IOChaos":
        raise ChaosloadConfigError(
            f"condition template {source} has unexpected kind {kind!r}, expected IOChaos"
        )
    metadata = template.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise ChaosloadConfigError(f"condition template {source} has no metadata.name")
    if not isinstance(template.get("spec"), dict):
        raise ChaosloadConfigError(f"condition template {source} has no spec mapping")
    return template


def record_phases(obj: ApiObject) -> List[ConditionPhase]:
    """Phases of every record in status.experiment (containerRecords or records)."""
    experiment = (obj.get("status") or {}).get("experiment") or {}
    records = experiment.get("containerRecords")
    if records is None:
        records = experiment.get("records")
    return [ConditionPhase.parse((record or {}).get("phase")) for record in records or []]


def is_injected(obj: ApiObject) -> bool:
    return all(phase == ConditionPhase.INJECTED for phase in record_phases(obj))


class ConditionAgent:
    """
    Creates and deletes condition objects, blocking until the API agrees.

    Args:
        client: Condition API client.
        template: Template object every ConditionSpec is copied from.
        poll_interval: Seconds between status polls.
        poll_timeout: Seconds before a create/delete wait gives up.
        retry_attempts: Attempts for transient submission errors.
        retry_base_delay: Base backoff delay in seconds.
        namespace: Used when the template carries no namespace.
    """

    def __init__(
        self,
        client: ConditionClient,
        template: ApiObject,
        *,
        poll_interval: float = 2.0,
        poll_timeout: float = 60.0,
        retry_attempts: int = 5,
        retry_base_delay: float = 0.5,
        namespace: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._template = validate_template(template)
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._namespace = namespace
        self._clock = clock
        self._sleep = sleep

    def instantiate(self, latency: str, percent: int) -> ConditionSpec:
        """Copy the template and fill in delay and percent."""
        body = copy.deepcopy(self._template)
        metadata = body["metadata"]
        metadata.setdefault("namespace", self._namespace)
        body["spec"]["delay"] = latency
        body["spec"]["percent"] = percent
        return ConditionSpec(
            name=metadata["name"],
            namespace=metadata["namespace"],
            delay=latency,
            percent=percent,
            body=body,
        )

    def create(self, spec: ConditionSpec) -> None:
        """
        Create the condition and wait until every record is injected.

        Raises:
            ConditionError: Submission failed for a reason other than
                "already exists", after retries where applicable.
            ConditionTimeoutError: Not injected within the poll timeout.
        """
        logger.debug("creating condition %s (delay=%s, percent=%s)", spec.key, spec.delay, spec.percent)

        def submit() -> None:
            try:
                self._client.create(copy.deepcopy(spec.body))
            except AlreadyExistsError:
                logger.debug("condition %s already exists", spec.key)

        try:
            retry_call(
                submit,
                max_attempts=self._retry_attempts,
                base_delay=self._retry_base_delay,
                description=f"create condition {spec.key}",
            )
        except Exception as exc:
            raise ConditionError(
                f"failed creating condition {spec.key}: {exc}", condition=spec.key
            ) from exc

        def ready() -> bool:
            try:
                return is_injected(self._client.get(spec.namespace, spec.name))
            except Exception as exc:
                logger.debug("polling condition %s: %s", spec.key, exc)
                return False

        if not self._poll(ready):
            raise ConditionTimeoutError(
                f"timed out after {self._poll_timeout}s waiting for condition "
                f"{spec.key} to get injected",
                condition=spec.key,
            )
        logger.debug("condition %s successfully created", spec.key)

    def delete(self, spec: ConditionSpec) -> None:
        """
        Delete the condition and wait until it is gone.

        Raises:
            ConditionError: Submission failed for a reason other than
                "not found", after retries where applicable.
            ConditionTimeoutError: Still present after the poll timeout.
        """
        logger.debug("deleting condition %s", spec.key)

        def submit() -> None:
            try:
                self._client.delete(spec.namespace, spec.name)
            except NotFoundError:
                logger.debug("condition %s already gone", spec.key)

        try:
            retry_call(
                submit,
                max_attempts=self._retry_attempts,
                base_delay=self._retry_base_delay,
                description=f"delete condition {spec.key}",
            )
        except Exception as exc:
            raise ConditionError(
                f"failed deleting condition {spec.key}: {exc}", condition=spec.key
            ) from exc

        def gone() -> bool:
            try:
                self._client.get(spec.namespace, spec.name)
            except NotFoundError:
                return True
            except Exception as exc:
                logger.debug("polling condition %s: %s", spec.key, exc)
            return False

        if not self._poll(gone):
            raise ConditionTimeoutError(
                f"timed out after {self._poll_timeout}s waiting for condition "
                f"{spec.key} to be deleted",
                condition=spec.key,
            )
        logger.debug("condition %s successfully deleted", spec.key)

    def _poll(self, done: Callable[[], bool]) -> bool:
        """Check done() every poll_interval until it holds or poll_timeout elapses."""
        deadline = self._clock() + self._poll_timeout
        while True:
            self._sleep(self._poll_interval)
            if done():
                return True
            if self._clock() >= deadline:
                return False
