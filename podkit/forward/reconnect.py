"""Port-forward with automatic reconnection.

The first connection must succeed; its failure is returned to the caller.
After that, whenever the current session ends, a supervisor task waits for
the next backoff tick and tries to establish a replacement, swapping it in
behind the same handle. Reconnect failures are logged, never surfaced:
the handle's ``wait`` resolves only after the caller stops it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

from podkit.cluster.base import PodAPI
from podkit.errors import PodkitError
from podkit.forward.handle import ForwardHandle
from podkit.forward.session import ForwardSession, forward
from podkit.models.config import ForwardConfig
from podkit.observability.logging import Logger, get_logger
from podkit.observability.metrics import forward_reconnects_total


async def backoff_ticker(interval: float) -> AsyncIterator[float]:
    """Yield the loop time every *interval* seconds, forever."""
    loop = asyncio.get_running_loop()
    while True:
        await asyncio.sleep(interval)
        yield loop.time()


class ReconnectingForwardHandle(ForwardHandle):
    """A ForwardHandle whose underlying session is replaced on failure.

    Session swaps hold the handle's lock. ``local_port`` deliberately does
    not: it stays synchronous and reads the session reference directly,
    which is safe because swaps happen in one assignment on the event loop
    thread. Keep it a plain method.

    Args:
        session: The first, already established session.
        connect: Establishes a new session; raises PodkitError on failure.
        backoff: Async iterable of ticks; one reconnect attempt per tick.
        logger:  Diagnostic sink.
    """

    def __init__(
        self,
        session: ForwardSession,
        connect: Callable[[], Awaitable[ForwardSession]],
        backoff: AsyncIterable[Any],
        logger: Logger | None = None,
    ) -> None:
        self._session = session
        self._connect = connect
        self._ticks = aiter(backoff)
        self._log = logger or get_logger("forward.reconnect")
        self._lock = asyncio.Lock()
        self._stopped = False
        self._closed: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.replacements = 0
        self._supervisor = asyncio.create_task(self._supervise(), name="forward-supervisor")

    @property
    def session(self) -> ForwardSession:
        """The currently installed session."""
        return self._session

    def local_port(self, remote_port: int) -> int:
        # Swaps replace the reference in one step on the loop thread, so a
        # read sees either the old or the new session, never a torn state.
        return self._session.local_port(remote_port)

    async def _supervise(self) -> None:
        try:
            while True:
                err = await self._session.wait()
                if self._stopped:
                    return
                if err is not None:
                    self._log.warning("reconnecting due to error", error=str(err))
                else:
                    self._log.info("reconnecting due to previous handle stopped")
                if not await self._reconnect():
                    return
        finally:
            self._log.info("forward stopped")

    async def _reconnect(self) -> bool:
        async for _ in self._ticks:
            if self._stopped:
                return False
            try:
                session = await self._connect()
            except PodkitError as exc:
                forward_reconnects_total.labels(outcome="failure").inc()
                self._log.warning("failed to forward to pod", error=str(exc))
                continue
            forward_reconnects_total.labels(outcome="success").inc()
            await self._replace(session)
            return True
        self._log.error("backoff signal exhausted; forward will not reconnect")
        return False

    async def _replace(self, session: ForwardSession) -> None:
        async with self._lock:
            if self._stopped:
                await session.stop()
                return
            previous, self._session = self._session, session
            self.replacements += 1
            await previous.stop()
        self._log.info("port forward replaced", pod=session.pod.name, replacements=self.replacements)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._supervisor.cancel()
        await asyncio.gather(self._supervisor, return_exceptions=True)
        async with self._lock:
            await self._session.stop()
        self._closed.set_result(None)

    async def wait(self) -> BaseException | None:
        await asyncio.shield(self._closed)
        return None

    def done(self) -> bool:
        return self._closed.done()


async def forward_with_reconnect(
    api: PodAPI,
    config: ForwardConfig,
    backoff: AsyncIterable[Any] | None = None,
    logger: Logger | None = None,
) -> ReconnectingForwardHandle:
    """Forward to a pod and keep the forward alive across tunnel failures.

    *backoff* defaults to ``backoff_ticker(config.backoff_interval)``.
    Errors from the first connection attempt propagate unchanged.
    """
    config.validate()
    log = logger or get_logger("forward")

    async def connect() -> ForwardSession:
        return await forward(api, config, logger=log)

    try:
        session = await connect()
    except PodkitError as exc:
        log.error("failed to forward pod", error=str(exc))
        raise
    ticks = backoff if backoff is not None else backoff_ticker(config.backoff_interval)
    return ReconnectingForwardHandle(session, connect, ticks, logger=log)
