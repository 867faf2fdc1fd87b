"""Port-forward tunnel over the pod ``portforward`` websocket subresource.

One local TCP listener is bound per requested port pair. Every accepted
connection gets its own websocket to the pod, framed with the
``v4.channel.k8s.io`` protocol: each binary message starts with a channel
byte (data on 0, errors on 1 for a single-port stream) and the first
message on each channel carries the remote port as two little-endian bytes.

A websocket that cannot be opened means the pod or the API server is gone,
so it terminates the whole tunnel with an ApiError. Errors reported by the
pod on the error channel only close the affected connection.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any

import aiohttp
import structlog

from podkit.cluster.base import Tunnel
from podkit.errors import ApiError
from podkit.models.forward import ForwardedPort, PortPair

_log = structlog.get_logger(component="cluster.portforward")

_DATA_CHANNEL = 0
_ERROR_CHANNEL = 1
_PORT_PREFIX_LEN = 2
_READ_CHUNK = 64 * 1024
_LISTEN_HOST = "127.0.0.1"

_WS_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class PortForwardTunnel(Tunnel):
    """Forwards local TCP ports to one pod.

    Args:
        core_v1:   CoreV1Api bound to a ``WsApiClient``.
        namespace: Pod namespace.
        pod_name:  Target pod.
        ports:     Requested port pairs; local 0 binds an ephemeral port.
    """

    def __init__(self, core_v1: Any, namespace: str, pod_name: str, ports: list[PortPair]) -> None:
        super().__init__()
        self._core_v1 = core_v1
        self._namespace = namespace
        self._pod_name = pod_name
        self._ports = list(ports)
        self._servers: list[asyncio.Server] = []
        self._connections: set[asyncio.Task[None]] = set()
        self._terminating: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Probe the pod, bind every listener and mark the tunnel ready."""
        try:
            await self._probe()
            forwarded = [await self._listen(pair) for pair in self._ports]
        except BaseException as exc:
            # Also reached when the caller's deadline cancels establishment.
            await self._shutdown()
            self._finish(exc if isinstance(exc, ApiError) else None)
            raise
        _log.info(
            "port_forward_ready",
            pod=self._pod_name,
            namespace=self._namespace,
            ports=[f"{p.local}:{p.remote}" for p in forwarded],
        )
        self._mark_ready(forwarded)

    async def _probe(self) -> None:
        remote = self._ports[0].remote
        try:
            async with await self._connect(remote):
                pass
        except _WS_ERRORS as exc:
            raise ApiError(f"port forward to pod {self._pod_name}", exc) from exc

    async def _listen(self, pair: PortPair) -> ForwardedPort:
        handler = functools.partial(self._on_connection, pair.remote)
        try:
            server = await asyncio.start_server(handler, host=_LISTEN_HOST, port=pair.local)
        except OSError as exc:
            raise ApiError(f"listen on local port {pair.local}", exc) from exc
        self._servers.append(server)
        local = server.sockets[0].getsockname()[1]
        return ForwardedPort(local=local, remote=pair.remote)

    async def _connect(self, remote: int) -> Any:
        return await self._core_v1.connect_get_namespaced_pod_portforward(
            self._pod_name,
            self._namespace,
            ports=remote,
            _preload_content=False,
        )

    async def _on_connection(self, remote: int, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            async with await self._connect(remote) as ws:
                await self._pipe(ws, reader, writer, remote)
        except _WS_ERRORS as exc:
            _log.warning("port_forward_connection_failed", pod=self._pod_name, remote_port=remote, error=str(exc))
            self._fail(ApiError(f"port forward to pod {self._pod_name}", exc))
        finally:
            writer.close()
            if task is not None:
                self._connections.discard(task)

    async def _pipe(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        remote: int,
    ) -> None:
        async def upstream() -> None:
            while data := await reader.read(_READ_CHUNK):
                await ws.send_bytes(bytes([_DATA_CHANNEL]) + data)

        async def downstream() -> None:
            port_prefix_pending = {_DATA_CHANNEL: True, _ERROR_CHANNEL: True}
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.BINARY:
                    if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        return
                    continue
                if not msg.data:
                    continue
                channel, payload = msg.data[0], msg.data[1:]
                if port_prefix_pending.get(channel):
                    port_prefix_pending[channel] = False
                    payload = payload[_PORT_PREFIX_LEN:]
                if not payload:
                    continue
                if channel == _DATA_CHANNEL:
                    writer.write(payload)
                    await writer.drain()
                elif channel == _ERROR_CHANNEL:
                    _log.warning(
                        "port_forward_remote_error",
                        pod=self._pod_name,
                        remote_port=remote,
                        error=payload.decode("utf-8", errors="replace"),
                    )
                    return

        pumps = {asyncio.create_task(upstream()), asyncio.create_task(downstream())}
        done, pending = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if isinstance(exc, _WS_ERRORS):
                raise exc
            if isinstance(exc, OSError):
                _log.debug("port_forward_local_connection_closed", remote_port=remote, error=str(exc))
            elif exc is not None:
                raise exc

    def _fail(self, err: ApiError) -> None:
        if self._stopping or self.closed():
            return
        self._stopping = True
        self._terminating = asyncio.create_task(self._terminate(err))

    async def _terminate(self, err: ApiError) -> None:
        await self._shutdown()
        self._finish(err)

    async def _shutdown(self) -> None:
        for server in self._servers:
            server.close()
        current = asyncio.current_task()
        connections = [task for task in self._connections if task is not current]
        for task in connections:
            task.cancel()
        await asyncio.gather(*connections, return_exceptions=True)
        for server in self._servers:
            await server.wait_closed()
        self._servers.clear()
