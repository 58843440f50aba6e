"""
Client interfaces the test flow depends on.

Objects are plain Kubernetes-style JSON mappings (apiVersion, kind,
metadata, spec, status). Implementations raise AlreadyExistsError and
NotFoundError for the two error kinds callers normalize; any other failure
is an ApiError or an httpx transport error.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

ApiObject = Dict[str, Any]
JsonPatch = List[Dict[str, Any]]


class ResourceClient(Protocol):
    """CRUD access to one namespaced resource kind (e.g. Deployments)."""

    def create(self, namespace: str, obj: ApiObject) -> ApiObject: ...

    def get(self, namespace: str, name: str) -> ApiObject: ...

    def update(self, namespace: str, obj: ApiObject) -> ApiObject: ...

    def patch(self, namespace: str, name: str, patch: JsonPatch) -> ApiObject: ...

    def list(self, namespace: str, label_selector: str) -> List[ApiObject]: ...

    def delete(self, namespace: str, name: str) -> None: ...


class ConditionClient(Protocol):
    """Access to fault-injection condition objects."""

    def create(self, obj: ApiObject) -> ApiObject: ...

    def get(self, namespace: str, name: str) -> ApiObject: ...

    def delete(self, namespace: str, name: str) -> None: ...


def object_name(obj: ApiObject) -> str:
    return str(obj.get("metadata", {}).get("name", ""))


def object_namespace(obj: ApiObject, default: str = "default") -> str:
    return str(obj.get("metadata", {}).get("namespace") or default)
