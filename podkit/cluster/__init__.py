"""Cluster access for podkit.

Submodules
----------
base        -- PodAPI and Tunnel abstract capabilities.
kube        -- KubernetesPodAPI: list/watch/logs/services over kubernetes-asyncio.
portforward -- PortForwardTunnel: local listeners bridged to the pod websocket.
kubeconfig  -- connect_pod_api(): kubeconfig / in-cluster client bootstrap.

Only ``base`` is imported eagerly so the stream and forward packages can be
used with any PodAPI implementation without loading kubernetes-asyncio.
"""

from podkit.cluster.base import PodAPI, Tunnel

__all__ = ["PodAPI", "Tunnel"]
