"""In-memory implementation of FanoutPort.

Single-process only. Useful for local dev and tests: several Broadcasters
sharing one broker behave like instances sharing one pub/sub channel.
"""
from __future__ import annotations

from typing import Dict, List
import asyncio

from application.ports.fanout import FanoutPort, MessageHandler
from core.logging_config import get_logger


logger = get_logger(__name__)


class InMemoryFanoutBroker(FanoutPort):
    def __init__(self) -> None:
        self._handlers: Dict[str, List[MessageHandler]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, message: str) -> None:  # type: ignore[override]
        # Best-effort deliver sequentially; a failing subscriber does not stop the rest
        async with self._lock:
            handlers = list(self._handlers.get(channel, []))
        for h in handlers:
            try:
                await h(message)
            except Exception as exc:
                logger.warning("inmemory_fanout_handler_failed", channel=channel, error=str(exc))

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.setdefault(channel, []).append(handler)

    async def aclose(self) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.clear()
