"""
Kubernetes REST clients over httpx.

Only the handful of calls the harness makes are implemented: namespaced
create/get/update/JSON-patch/list/delete on a single resource kind, and the
same subset for Chaos Mesh condition objects.
"""

from __future__ import annotations

import json
import logging
import ssl
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import httpx

from chaosload.clients.base import ApiObject, JsonPatch, object_name, object_namespace
from chaosload.exceptions import AlreadyExistsError, ApiError, NotFoundError

logger = logging.getLogger(__name__)

DEPLOYMENTS = ("apis/apps/v1", "deployments")
PODS = ("api/v1", "pods")
IOCHAOS = ("apis/chaos-mesh.org/v1alpha1", "iochaos")

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


@dataclass
class ApiConnection:
    """
    Where and how to reach an API server.

    Attributes:
        server: Base URL, e.g. "https://10.0.0.1:6443".
        token: Bearer token, if the user authenticates with one.
        verify: False to skip TLS verification, or an SSLContext carrying
            the cluster CA and any client certificate.
        timeout: Per-request timeout in seconds.
        transport: Custom httpx transport (tests use httpx.MockTransport).
    """

    server: str
    token: Optional[str] = None
    verify: Union[bool, ssl.SSLContext] = True
    timeout: float = 30.0
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.server.rstrip("/"),
            headers=self._headers(),
            verify=self.verify,
            timeout=self.timeout,
            transport=self.transport,
        )


def raise_for_api_status(response: httpx.Response) -> None:
    """Translate a non-2xx response into the ApiError hierarchy."""
    if response.is_success:
        return

    reason: Optional[str] = None
    message = response.text or response.reason_phrase
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        reason = body.get("reason") or None
        message = body.get("message") or message

    status = response.status_code
    method = response.request.method
    if status == 404:
        raise NotFoundError(message, status_code=status, reason=reason or "NotFound")
    if status == 409 and (reason == "AlreadyExists" or (reason is None and method == "POST")):
        raise AlreadyExistsError(
            message, status_code=status, reason=reason or "AlreadyExists"
        )
    raise ApiError(message, status_code=status, reason=reason)


class KubeResourceClient:
    """
    Namespaced CRUD on one resource kind.

    Example:
        client = KubeResourceClient(connection, *DEPLOYMENTS)
        client.list("default", "app=nginx,workerId=3")
    """

    def __init__(
        self,
        connection: ApiConnection,
        prefix: str,
        plural: str,
        *,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self._prefix = prefix.strip("/")
        self._plural = plural
        self._http = http or connection.client()

    def _collection(self, namespace: str) -> str:
        return f"/{self._prefix}/namespaces/{namespace}/{self._plural}"

    def _item(self, namespace: str, name: str) -> str:
        return f"{self._collection(namespace)}/{name}"

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = self._http.request(method, url, **kwargs)
        raise_for_api_status(response)
        return response

    def create(self, namespace: str, obj: ApiObject) -> ApiObject:
        return self._send("POST", self._collection(namespace), json=obj).json()

    def get(self, namespace: str, name: str) -> ApiObject:
        return self._send("GET", self._item(namespace, name)).json()

    def update(self, namespace: str, obj: ApiObject) -> ApiObject:
        url = self._item(namespace, object_name(obj))
        return self._send("PUT", url, json=obj).json()

    def patch(self, namespace: str, name: str, patch: JsonPatch) -> ApiObject:
        return self._send(
            "PATCH",
            self._item(namespace, name),
            content=json.dumps(patch),
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        ).json()

    def list(self, namespace: str, label_selector: str) -> List[ApiObject]:
        params = {"labelSelector": label_selector} if label_selector else None
        body = self._send("GET", self._collection(namespace), params=params).json()
        return list(body.get("items") or [])

    def delete(self, namespace: str, name: str) -> None:
        self._send("DELETE", self._item(namespace, name))

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "KubeResourceClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class KubeConditionClient:
    """Chaos Mesh IOChaos objects; namespace is taken from the object."""

    def __init__(
        self,
        connection: ApiConnection,
        prefix: str = IOCHAOS[0],
        plural: str = IOCHAOS[1],
        *,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self._resources = KubeResourceClient(connection, prefix, plural, http=http)

    def create(self, obj: ApiObject) -> ApiObject:
        return self._resources.create(object_namespace(obj), obj)

    def get(self, namespace: str, name: str) -> ApiObject:
        return self._resources.get(namespace, name)

    def delete(self, namespace: str, name: str) -> None:
        self._resources.delete(namespace, name)

    def close(self) -> None:
        self._resources.close()
