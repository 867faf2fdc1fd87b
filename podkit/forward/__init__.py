"""Port-forwarding to pods selected by label.

Submodules
----------
handle    -- ForwardHandle, the caller-facing capability.
session   -- ForwardSession / forward(): one tunnel to one pod.
reconnect -- ReconnectingForwardHandle / forward_with_reconnect(): replaces
             failed sessions on every backoff tick.
"""

from podkit.forward.handle import ForwardHandle
from podkit.forward.reconnect import ReconnectingForwardHandle, backoff_ticker, forward_with_reconnect
from podkit.forward.session import ForwardSession, forward

__all__ = [
    "ForwardHandle",
    "ForwardSession",
    "ReconnectingForwardHandle",
    "backoff_ticker",
    "forward",
    "forward_with_reconnect",
]
