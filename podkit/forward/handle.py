"""Caller-facing port-forward handle."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ForwardHandle(ABC):
    """Controls access to a pod port-forward.

    ``wait`` resolves exactly once: None after a graceful ``stop``, the
    cause after an abnormal tunnel termination. ``stop`` is idempotent.
    """

    @abstractmethod
    def local_port(self, remote_port: int) -> int:
        """Local port bound for *remote_port*, or PORT_UNSPECIFIED if it was never requested."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop forwarding. Safe to call more than once."""

    @abstractmethod
    async def wait(self) -> BaseException | None:
        """Block until the handle terminates and return the cause, if any."""

    @abstractmethod
    def done(self) -> bool:
        """True once ``wait`` would return without blocking."""
