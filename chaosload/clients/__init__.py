"""
API clients for the resource and condition APIs.

Usage:
    from chaosload.clients import load_connection, KubeResourceClient, DEPLOYMENTS

    connection = load_connection("kubeconfig")
    deployments = KubeResourceClient(connection, *DEPLOYMENTS)
"""

from chaosload.clients.base import (
    ApiObject,
    ConditionClient,
    JsonPatch,
    ResourceClient,
    object_name,
    object_namespace,
)
from chaosload.clients.kube import (
    DEPLOYMENTS,
    IOCHAOS,
    PODS,
    ApiConnection,
    KubeConditionClient,
    KubeResourceClient,
    raise_for_api_status,
)
from chaosload.clients.kubeconfig import load_connection

__all__ = [
    "ApiObject",
    "ConditionClient",
    "JsonPatch",
    "ResourceClient",
    "object_name",
    "object_namespace",
    "DEPLOYMENTS",
    "IOCHAOS",
    "PODS",
    "ApiConnection",
    "KubeConditionClient",
    "KubeResourceClient",
    "raise_for_api_status",
    "load_connection",
]
