"""
Worker: one simulated API client.

Each cycle creates a Deployment labelled with the worker's identity, then
gets, updates, patches, lists and deletes it. Every call is timed and
recorded into the MetricsAggregator; failures are metrics and log lines,
never exceptions. A worker is only ever driven by one thread at a time, so
its owned-resource field needs no locking.
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Callable, Dict, List, Optional

from chaosload.cancellation import CancelToken
from chaosload.clients.base import ApiObject, JsonPatch, ResourceClient, object_name
from chaosload.exceptions import AlreadyExistsError, NotFoundError
from chaosload.metrics.collector import MetricsAggregator
from chaosload.models import (
    APP_IMAGE,
    APP_NAME,
    UNBOUNDED_JOBS,
    OperationRecord,
    TestCaseID,
    Verb,
    WorkerLabels,
)
from chaosload.retry import retry_call

logger = logging.getLogger(__name__)

UPDATE_ANNOTATIONS: Dict[str, str] = {"updated": "true"}

PATCH: JsonPatch = [
    {
        "op": "replace",
        "path": "/metadata/annotations",
        "value": {"patched": "true"},
    }
]


def deployment_manifest(name: str, labels: WorkerLabels) -> ApiObject:
    """The nginx Deployment every cycle creates, stamped with the worker's labels."""
    label_map = labels.as_dict()
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "labels": dict(label_map)},
        "spec": {
            "replicas": 3,
            "selector": {"matchLabels": dict(label_map)},
            "template": {
                "metadata": {"labels": dict(label_map)},
                "spec": {
                    "containers": [
                        {
                            "name": labels.app,
                            "image": APP_IMAGE,
                            "ports": [{"containerPort": 80}],
                        }
                    ]
                },
            },
        },
    }


class Worker:
    """
    Drives CRUD cycles against the resource API and cleans up after itself.

    Args:
        worker_id: Identity used in resource names and labels.
        deployments: Client for the Deployments API.
        pods: Client for the Pods API (cleanup only).
        metrics: Shared aggregator.
        namespace: Namespace to operate in.
        app: Value of the "app" label.
        cleanup_attempts: Attempts for listing leftovers during cleanup.
        cleanup_base_delay: Base backoff delay for those attempts.
    """

    def __init__(
        self,
        worker_id: int,
        deployments: ResourceClient,
        pods: ResourceClient,
        metrics: MetricsAggregator,
        *,
        namespace: str = "default",
        app: str = APP_NAME,
        cleanup_attempts: int = 5,
        cleanup_base_delay: float = 0.5,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.id = worker_id
        self.labels = WorkerLabels(worker_id=worker_id, app=app)
        self.namespace = namespace
        self._deployments = deployments
        self._pods = pods
        self._metrics = metrics
        self._cleanup_attempts = cleanup_attempts
        self._cleanup_base_delay = cleanup_base_delay
        self._timer = timer
        # The single resource this worker currently owns, if any.
        self.owned: Optional[ApiObject] = None

    def __repr__(self) -> str:
        return f"Worker(id={self.id})"

    def resource_name(self, job_index: int) -> str:
        return f"{self.labels.app}-{self.id}-{job_index}"

    def _record(self, verb: Verb, success: bool, started: float, case: TestCaseID) -> None:
        self._metrics.observe(
            OperationRecord(
                verb=verb,
                success=success,
                latency_seconds=max(0.0, self._timer() - started),
                test_case=case,
                worker_id=self.id,
            )
        )

    def run(self, token: CancelToken, jobs: int, case: TestCaseID) -> None:
        """
        Run CRUD cycles until jobs are done or the token is cancelled.

        The token is checked before each cycle; a started cycle always finishes.
        """
        logger.debug("[worker %s] has started performance testing %s", self.id, case)
        job_index = 0
        while jobs == UNBOUNDED_JOBS or job_index < jobs:
            if token.cancelled:
                logger.info(
                    "[worker %s] has received stop signal after %d cycles", self.id, job_index
                )
                break
            self.run_cycle(case, job_index)
            job_index += 1
        logger.debug("[worker %s] performance testing done!", self.id)

    def run_cycle(self, case: TestCaseID, job_index: int = 0) -> None:
        """create -> get -> update -> patch -> list -> delete, recording every call."""
        self.owned = None
        self._create(case, job_index)
        if self.owned is not None:
            self._get(case)
        if self.owned is not None:
            self._update(case)
        if self.owned is not None:
            self._patch(case)
        self._list(case)
        if self.owned is not None:
            self._delete(case)

    def _create(self, case: TestCaseID, job_index: int) -> None:
        manifest = deployment_manifest(self.resource_name(job_index), self.labels)
        name = object_name(manifest)
        started = self._timer()
        try:
            created = self._deployments.create(self.namespace, manifest)
        except AlreadyExistsError:
            # Adopt the leftover without counting it either way.
            self.owned = manifest
            logger.debug("[worker %s] finds that deployment %s already exists", self.id, name)
            return
        except Exception as exc:
            self._record(Verb.CREATE, False, started, case)
            logger.error("[worker %s] has failed to create deployment %s: %s", self.id, name, exc)
            return
        self._record(Verb.CREATE, True, started, case)
        self.owned = created if isinstance(created, dict) and created else manifest
        logger.debug("[worker %s] has successfully created deployment %s", self.id, name)

    def _get(self, case: TestCaseID) -> None:
        name = object_name(self.owned)
        started = self._timer()
        try:
            self._deployments.get(self.namespace, name)
        except Exception as exc:
            self._record(Verb.GET, False, started, case)
            logger.error("[worker %s] has failed to get deployment %s: %s", self.id, name, exc)
            return
        self._record(Verb.GET, True, started, case)
        logger.debug("[worker %s] has successfully got deployment %s", self.id, name)

    def _update(self, case: TestCaseID) -> None:
        desired = copy.deepcopy(self.owned)
        desired.setdefault("metadata", {})["annotations"] = dict(UPDATE_ANNOTATIONS)
        name = object_name(desired)
        started = self._timer()
        try:
            updated = self._deployments.update(self.namespace, desired)
        except Exception as exc:
            self._record(Verb.UPDATE, False, started, case)
            logger.error("[worker %s] has failed to update deployment %s: %s", self.id, name, exc)
            return
        self._record(Verb.UPDATE, True, started, case)
        self.owned = updated if isinstance(updated, dict) and updated else desired
        logger.debug("[worker %s] has successfully updated deployment %s", self.id, name)

    def _patch(self, case: TestCaseID) -> None:
        name = object_name(self.owned)
        started = self._timer()
        try:
            self._deployments.patch(self.namespace, name, PATCH)
        except Exception as exc:
            self._record(Verb.PATCH, False, started, case)
            logger.error("[worker %s] has failed to patch deployment %s: %s", self.id, name, exc)
            return
        self._record(Verb.PATCH, True, started, case)
        logger.debug("[worker %s] has successfully patched deployment %s", self.id, name)

    def _list(self, case: TestCaseID) -> None:
        started = self._timer()
        try:
            self._deployments.list(self.namespace, self.labels.selector())
        except Exception as exc:
            self._record(Verb.LIST, False, started, case)
            logger.error("[worker %s] has failed to list deployments: %s", self.id, exc)
            return
        self._record(Verb.LIST, True, started, case)
        logger.debug("[worker %s] has successfully listed deployments", self.id)

    def _delete(self, case: TestCaseID) -> None:
        name = object_name(self.owned)
        started = self._timer()
        try:
            self._deployments.delete(self.namespace, name)
        except Exception as exc:
            self._record(Verb.DELETE, False, started, case)
            logger.error("[worker %s] has failed to delete deployment %s: %s", self.id, name, exc)
            return
        self._record(Verb.DELETE, True, started, case)
        self.owned = None
        logger.debug("[worker %s] has successfully deleted deployment %s", self.id, name)

    def cleanup(self, token: CancelToken) -> None:
        """
        Delete every Deployment and Pod carrying this worker's labels.

        Best-effort: listing is retried with backoff and then abandoned,
        delete failures other than "not found" are logged.
        """
        logger.debug("[worker %s] has started cleanup", self.id)
        self._cleanup_kind("deployments", self._deployments, token)
        self._cleanup_kind("pods", self._pods, token)
        self.owned = None
        logger.debug("[worker %s] cleanup done!", self.id)

    def _cleanup_kind(self, kind: str, client: ResourceClient, token: CancelToken) -> None:
        selector = self.labels.selector()
        try:
            remaining: List[ApiObject] = retry_call(
                lambda: client.list(self.namespace, selector),
                max_attempts=self._cleanup_attempts,
                base_delay=self._cleanup_base_delay,
                retriable=_always,
                should_continue=lambda: not token.cancelled,
                description=f"[worker {self.id}] list {kind}",
            )
        except Exception as exc:
            logger.error(
                "[worker %s] has failed to list remaining %s for cleanup: %s", self.id, kind, exc
            )
            return

        if remaining:
            logger.debug(
                "[worker %s] has found %d remaining %s, starting cleanup",
                self.id,
                len(remaining),
                kind,
            )
        else:
            logger.debug("[worker %s] has found no remaining %s", self.id, kind)

        for obj in remaining:
            if token.cancelled:
                logger.info("[worker %s] has received stop signal, now exiting cleanup", self.id)
                return
            name = object_name(obj)
            try:
                client.delete(self.namespace, name)
            except NotFoundError:
                continue
            except Exception as exc:
                logger.error("[worker %s] has failed to delete %s %s: %s", self.id, kind, name, exc)
                continue
            logger.debug("[worker %s] has successfully deleted %s %s", self.id, kind, name)


def _always(_exc: BaseException) -> bool:
    return True
