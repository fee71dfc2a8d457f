"""
Fanout port (contracts-first).

The broadcast core talks to the cross-instance publish/subscribe channel
only through this protocol, so the application layer stays decoupled
from the concrete transport (in-memory, Redis pub/sub, ...).

Messages are opaque serialized events; each carries its origin instance
id so receivers can suppress their own echoes.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Protocol


MessageHandler = Callable[[str], Awaitable[None]]


class FanoutPort(Protocol):
    """Abstraction for cross-instance broadcast.

    Delivery is at-least-once, unordered across publishers, with no
    acknowledgement back to the publisher. ``publish`` raises
    ``TransportFailureException`` when the message could not be handed to
    the transport.
    """

    async def publish(self, channel: str, message: str) -> None: ...

    async def subscribe(self, channel: str, handler: MessageHandler) -> None: ...

    async def aclose(self) -> None: ...  # pragma: no cover - optional


__all__ = ["FanoutPort", "MessageHandler"]
