"""
Resolve an ApiConnection from a kubeconfig file or the in-cluster service account.

Credential resolution is delegated to ``kubernetes.config``, so every auth
method it understands (tokens, client certificates, exec and auth-provider
plugins) works here. The resolved ``Configuration`` is then folded into the
connection the httpx-based clients use.
"""

from __future__ import annotations

import logging
import os
import ssl
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from kubernetes import config as kube_config
from kubernetes.client import Configuration
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.incluster_config import InClusterConfigLoader

from chaosload.clients.kube import ApiConnection
from chaosload.exceptions import ChaosloadConfigError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")

_BEARER = "bearer "


def load_connection(
    kubeconfig: Optional[str], *, timeout: float = 30.0
) -> ApiConnection:
    """
    Build a connection from a kubeconfig path, or in-cluster config if empty.

    Raises:
        ChaosloadConfigError: The config cannot be read or is incomplete.
    """
    if not kubeconfig:
        return in_cluster_connection(timeout=timeout)
    return kubeconfig_connection(kubeconfig, timeout=timeout)


def in_cluster_connection(
    *,
    timeout: float = 30.0,
    environ: Optional[Dict[str, str]] = None,
    service_account_dir: Path = SERVICE_ACCOUNT_DIR,
) -> ApiConnection:
    environ = os.environ if environ is None else environ
    if not environ.get("KUBERNETES_SERVICE_HOST"):
        raise ChaosloadConfigError(
            "no kubeconfig given and not running inside a cluster",
            code="missing_kubeconfig",
        )

    configuration = Configuration()
    loader = InClusterConfigLoader(
        token_filename=str(service_account_dir / "token"),
        cert_filename=str(service_account_dir / "ca.crt"),
        environ=environ,
    )
    try:
        loader.load_and_set(configuration)
    except ConfigException as exc:
        raise ChaosloadConfigError(
            f"cannot load service account: {exc}",
            details={"path": str(service_account_dir)},
        ) from exc
    return _connection_from_configuration(configuration, timeout)


def kubeconfig_connection(path: str, *, timeout: float = 30.0) -> ApiConnection:
    config_path = str(Path(path).expanduser())
    configuration = Configuration()
    try:
        kube_config.load_kube_config(
            config_file=config_path, client_configuration=configuration
        )
    except (ConfigException, OSError, yaml.YAMLError) as exc:
        raise ChaosloadConfigError(
            f"cannot load kubeconfig {path}: {exc}", details={"path": path}
        ) from exc

    logger.debug("using kubeconfig %s (server %s)", path, configuration.host)
    return _connection_from_configuration(configuration, timeout)


def _bearer_token(configuration: Configuration) -> Optional[str]:
    # Runs the refresh hook, which is where exec plugins mint their token.
    value = configuration.get_api_key_with_prefix("authorization")
    if not value:
        return None
    if value.lower().startswith(_BEARER):
        value = value[len(_BEARER):]
    return value.strip() or None


def _ssl_context(configuration: Configuration) -> ssl.SSLContext:
    context = ssl.create_default_context(cafile=configuration.ssl_ca_cert)
    if not configuration.verify_ssl:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if configuration.cert_file:
        context.load_cert_chain(configuration.cert_file, configuration.key_file)
    return context


def _connection_from_configuration(
    configuration: Configuration, timeout: float
) -> ApiConnection:
    verify: Union[bool, ssl.SSLContext]
    if not configuration.verify_ssl and not configuration.cert_file:
        verify = False
    else:
        try:
            verify = _ssl_context(configuration)
        except (OSError, ssl.SSLError) as exc:
            raise ChaosloadConfigError(
                f"cannot load TLS material: {exc}", code="invalid_tls"
            ) from exc
    return ApiConnection(
        server=configuration.host,
        token=_bearer_token(configuration),
        verify=verify,
        timeout=timeout,
    )
