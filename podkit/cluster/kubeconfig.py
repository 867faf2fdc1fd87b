"""Cluster client bootstrap.

Resolution order:
    1. an explicit kubeconfig path,
    2. the in-cluster service account, when ``KUBECONFIG`` is not set,
    3. the default kubeconfig location (``$KUBECONFIG`` or ``~/.kube/config``).
"""

from __future__ import annotations

import os

import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio.stream import WsApiClient  # type: ignore[import-untyped]

from podkit.cluster.kube import KubernetesPodAPI
from podkit.errors import ConfigError
from podkit.models.config import KubeConfig

_log = structlog.get_logger(component="cluster.kubeconfig")


async def load_client_configuration(kube: KubeConfig) -> k8s_client.Configuration:
    """Resolve a client Configuration without touching the global default."""
    configuration = k8s_client.Configuration()
    context = kube.context or None
    try:
        if kube.kubeconfig_path:
            await k8s_config.load_kube_config(
                config_file=kube.kubeconfig_path,
                context=context,
                client_configuration=configuration,
            )
            _log.info("k8s client configured from kubeconfig", path=kube.kubeconfig_path)
            return configuration

        if not os.environ.get("KUBECONFIG"):
            try:
                # load_incluster_config() is synchronous in kubernetes-asyncio
                k8s_config.load_incluster_config(client_configuration=configuration)
                _log.info("k8s client configured from in-cluster service account")
                return configuration
            except k8s_config.ConfigException:
                pass

        await k8s_config.load_kube_config(context=context, client_configuration=configuration)
        _log.info("k8s client configured from default kubeconfig", context=kube.context)
    except (k8s_config.ConfigException, OSError) as exc:
        raise ConfigError(f"unable to load cluster configuration: {exc}") from exc
    return configuration


async def connect_pod_api(kube: KubeConfig) -> KubernetesPodAPI:
    """Build a KubernetesPodAPI for the resolved cluster.

    The caller owns the result and must ``await api.close()``.
    """
    configuration = await load_client_configuration(kube)
    return KubernetesPodAPI(
        api_client=k8s_client.ApiClient(configuration),
        ws_api_client=WsApiClient(configuration),
    )
