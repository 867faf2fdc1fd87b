"""Single port-forward session to the first schedulable matching pod."""

from __future__ import annotations

import asyncio

from podkit.cluster.base import PodAPI, Tunnel
from podkit.errors import ForwardTimeoutError, NoPodsFoundError
from podkit.forward.handle import ForwardHandle
from podkit.models.config import ForwardConfig
from podkit.models.forward import PORT_UNSPECIFIED, ForwardedPort
from podkit.models.logs import PodDescriptor
from podkit.observability.logging import Logger, get_logger


class ForwardSession(ForwardHandle):
    """Owns one live tunnel.

    The remote -> local port mapping is captured once, when the tunnel
    becomes ready, and never changes afterwards.
    """

    def __init__(
        self,
        tunnel: Tunnel,
        pod: PodDescriptor,
        ports: list[ForwardedPort],
        logger: Logger | None = None,
    ) -> None:
        self._tunnel = tunnel
        self._pod = pod
        self._ports = {p.remote: p.local for p in ports}
        self._log = logger or get_logger("forward.session")
        self._stopped = False

    @property
    def pod(self) -> PodDescriptor:
        return self._pod

    def ports(self) -> dict[int, int]:
        """Copy of the remote -> local port mapping."""
        return dict(self._ports)

    def local_port(self, remote_port: int) -> int:
        return self._ports.get(remote_port, PORT_UNSPECIFIED)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._log.info("stopping port forward", pod=self._pod.name)
        await self._tunnel.stop()

    async def wait(self) -> BaseException | None:
        return await self._tunnel.wait_closed()

    def done(self) -> bool:
        return self._tunnel.closed()


async def forward(api: PodAPI, config: ForwardConfig, logger: Logger | None = None) -> ForwardSession:
    """Establish one tunnel and return once it is ready.

    Raises:
        ConfigError:         the config is invalid.
        ApiError:            listing or tunnel establishment failed.
        NoPodsFoundError:    no schedulable pod matched the selector.
        ForwardTimeoutError: the tunnel was not ready within ``config.timeout``.
    """
    config.validate()
    log = logger or get_logger("forward")
    log.info("starting forwarder", namespace=config.namespace, selector=config.label_selector)
    try:
        async with asyncio.timeout(config.timeout):
            return await _establish(api, config, log)
    except TimeoutError as exc:
        log.warning("port forward start timed out", timeout=config.timeout)
        raise ForwardTimeoutError(config.timeout) from exc


async def _establish(api: PodAPI, config: ForwardConfig, log: Logger) -> ForwardSession:
    pods = await api.list_pods(config.namespace, config.label_selector)
    candidates = [pod for pod in pods.items if not pod.pending]
    if not candidates:
        log.warning("no pods listed", namespace=config.namespace, selector=config.label_selector)
        raise NoPodsFoundError(config.namespace, config.label_selector)

    target = candidates[0]
    log.info("forwarding to pod", namespace=target.namespace, pod=target.name, uid=target.uid)
    tunnel = await api.open_tunnel(config.namespace, target.name, list(config.ports))
    try:
        ports = await tunnel.wait_ready()
    except BaseException:
        await tunnel.stop()
        raise
    log.info("port forward is ready", pod=target.name, ports={p.remote: p.local for p in ports})
    return ForwardSession(tunnel, target, ports, logger=log)
