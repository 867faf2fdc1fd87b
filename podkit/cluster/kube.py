"""PodAPI implementation backed by kubernetes-asyncio.

Every kubernetes-asyncio and aiohttp failure is translated into ApiError
here so nothing outside ``podkit.cluster`` depends on client exceptions.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any

import aiohttp
import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import watch as k8s_watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]
from kubernetes_asyncio.stream import WsApiClient  # type: ignore[import-untyped]

from podkit.cluster.base import PodAPI, Tunnel
from podkit.cluster.portforward import PortForwardTunnel
from podkit.errors import ApiError
from podkit.models.forward import PortPair
from podkit.models.logs import PodDescriptor, PodEvent, PodEventType, PodList, PodPhase

_log = structlog.get_logger(component="cluster.kube")

# Server-side watch timeout. The API server closes the watch after this many
# seconds and the caller resumes from the last resource version it saw.
_WATCH_TIMEOUT_SECONDS = 300

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

_LOG_CHUNK_SIZE = 64 * 1024


def _api_error(operation: str, exc: Exception) -> ApiError:
    if isinstance(exc, ApiException):
        return ApiError(operation, exc.reason or exc, status=exc.status)
    return ApiError(operation, exc)


def pod_from_object(pod: Any) -> PodDescriptor:
    """Build a PodDescriptor from a deserialised V1Pod."""
    metadata = pod.metadata
    status = pod.status
    return PodDescriptor(
        uid=str(metadata.uid or ""),
        name=str(metadata.name or ""),
        namespace=str(metadata.namespace or ""),
        phase=str(status.phase) if status is not None and status.phase else PodPhase.UNKNOWN,
        start_time=status.start_time if status is not None else None,
        resource_version=str(metadata.resource_version or ""),
        labels=dict(metadata.labels or {}),
    )


def selector_from_labels(labels: dict[str, str]) -> str:
    """Render a label map as an equality-based selector string."""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


class KubernetesPodAPI(PodAPI):
    """PodAPI over the kubernetes-asyncio CoreV1 client.

    Args:
        api_client:    REST client used for list/watch/logs/services.
        ws_api_client: Websocket client used for port-forward tunnels.
        watch_timeout: Server-side watch timeout in seconds.
    """

    def __init__(
        self,
        api_client: Any | None = None,
        ws_api_client: Any | None = None,
        watch_timeout: int = _WATCH_TIMEOUT_SECONDS,
    ) -> None:
        self._api_client = api_client or k8s_client.ApiClient()
        self._ws_api_client = ws_api_client or WsApiClient()
        self._core_v1 = k8s_client.CoreV1Api(api_client=self._api_client)
        self._ws_core_v1 = k8s_client.CoreV1Api(api_client=self._ws_api_client)
        self._watch_timeout = watch_timeout

    async def list_pods(self, namespace: str, label_selector: str) -> PodList:
        try:
            result = await self._core_v1.list_namespaced_pod(namespace=namespace, label_selector=label_selector)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _api_error("list pods", exc) from exc
        return PodList(
            items=[pod_from_object(pod) for pod in result.items],
            resource_version=str(result.metadata.resource_version or ""),
        )

    async def watch_pods(
        self,
        namespace: str,
        label_selector: str,
        resource_version: str = "",
    ) -> AsyncIterator[PodEvent]:
        kwargs: dict[str, Any] = {
            "namespace": namespace,
            "label_selector": label_selector,
            "timeout_seconds": self._watch_timeout,
            "allow_watch_bookmarks": True,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version

        watcher = k8s_watch.Watch()
        try:
            async with watcher.stream(self._core_v1.list_namespaced_pod, **kwargs) as stream:
                async for event in stream:
                    yield self._to_event(event)
        except ApiException as exc:
            if exc.status == 410:
                _log.debug("watch_resource_version_expired", resource_version=resource_version)
                yield PodEvent(type=PodEventType.EXPIRED)
                return
            raise _api_error("watch pods", exc) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _api_error("watch pods", exc) from exc

    @staticmethod
    def _to_event(event: dict[str, Any]) -> PodEvent:
        event_type = PodEventType(event["type"])
        raw = event.get("raw_object") or {}
        resource_version = str(raw.get("metadata", {}).get("resourceVersion", ""))
        if event_type == PodEventType.BOOKMARK:
            return PodEvent(type=event_type, resource_version=resource_version)
        pod = pod_from_object(event["object"])
        return PodEvent(type=event_type, pod=pod, resource_version=pod.resource_version or resource_version)

    async def open_log_stream(
        self,
        namespace: str,
        pod_name: str,
        *,
        follow: bool,
        container: str | None = None,
        timestamps: bool = True,
    ) -> AsyncGenerator[str, None]:
        kwargs: dict[str, Any] = {"follow": follow, "timestamps": timestamps, "_preload_content": False}
        if container:
            kwargs["container"] = container
        try:
            resp = await self._core_v1.read_namespaced_pod_log(pod_name, namespace, **kwargs)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _api_error(f"open log stream for pod {pod_name}", exc) from exc
        return _iter_lines(resp, pod_name)

    async def open_tunnel(self, namespace: str, pod_name: str, ports: list[PortPair]) -> Tunnel:
        tunnel = PortForwardTunnel(self._ws_core_v1, namespace, pod_name, ports)
        await tunnel.start()
        return tunnel

    async def service_selector(self, namespace: str, service: str) -> str:
        try:
            svc = await self._core_v1.read_namespaced_service(service, namespace)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _api_error(f"get service {service!r}", exc) from exc
        labels = dict(svc.spec.selector or {}) if svc.spec is not None else {}
        if not labels:
            raise ApiError(f"get service {service!r}", "service has no pod selector")
        return selector_from_labels(labels)

    async def close(self) -> None:
        await self._ws_api_client.close()
        await self._api_client.close()


def _decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


async def _iter_lines(resp: aiohttp.ClientResponse, pod_name: str) -> AsyncGenerator[str, None]:
    # Lines are split here rather than with StreamReader.readline, which
    # raises LineTooLong once a line outgrows the read buffer.
    pending = b""
    try:
        async for chunk in resp.content.iter_chunked(_LOG_CHUNK_SIZE):
            *lines, pending = (pending + chunk).split(b"\n")
            for raw in lines:
                yield _decode_line(raw)
        if pending:
            yield _decode_line(pending)
    except _TRANSPORT_ERRORS as exc:
        raise _api_error(f"read log stream for pod {pod_name}", exc) from exc
    finally:
        resp.release()
