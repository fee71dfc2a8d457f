"""Redis Pub/Sub based FanoutPort implementation.

Reuses the shared RedisClient from infrastructure.external.cache. Every
instance publishes to and subscribes to the same channel; origin
suppression happens in the Broadcaster.

The listener survives Redis outages: it reconnects with exponential
backoff while local delivery keeps working on its own.
"""
from __future__ import annotations

import asyncio
import random
from typing import Optional

from application.ports.fanout import FanoutPort, MessageHandler
from core.logging_config import get_logger
from domain.common.exceptions import TransportFailureException
from infrastructure.external.cache import get_redis_client, RedisClient


logger = get_logger(__name__)


class RedisFanoutBroker(FanoutPort):
    def __init__(
        self,
        client: Optional[RedisClient] = None,
        *,
        initial_backoff_s: float = 0.5,
        max_backoff_s: float = 30.0,
    ) -> None:
        self._client = client
        self._initial_backoff = max(0.001, initial_backoff_s)
        self._max_backoff = max(self._initial_backoff, max_backoff_s)
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.reconnects = 0
        # true while a Redis subscription is confirmed
        self.connected = False

    async def _ensure_client(self) -> RedisClient:
        if self._client is None:
            self._client = await get_redis_client()
        return self._client

    async def publish(self, channel: str, message: str) -> None:  # type: ignore[override]
        try:
            client = await self._ensure_client()
        except Exception as exc:
            raise TransportFailureException(
                "Redis unavailable", details={"channel": channel, "reason": str(exc)}
            ) from exc
        await client.publish(channel, message)

    async def _listen(self, channel: str, handler: MessageHandler) -> None:
        backoff = self._initial_backoff

        def subscribed() -> None:
            self.connected = True
            logger.info("redis_fanout_subscribed", channel=channel, reconnects=self.reconnects)

        while not self._stopping.is_set():
            try:
                client = await self._ensure_client()
                async for message in client.subscribe(channel, on_subscribed=subscribed):
                    backoff = self._initial_backoff
                    data = message.get("data")
                    if not isinstance(data, (str, bytes)):
                        continue
                    try:
                        await handler(data)
                    except Exception as exc:
                        logger.warning("redis_fanout_handler_failed", channel=channel, error=str(exc))
                logger.warning("redis_fanout_stream_ended", channel=channel)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("redis_fanout_listen_failed", channel=channel, error=str(exc), retry_in=backoff)
            self.connected = False

            if self._stopping.is_set():
                break
            delay = backoff * random.uniform(1.0, 1.2)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, self._max_backoff)
            self.reconnects += 1

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:  # type: ignore[override]
        self._stopping.clear()
        self._task = asyncio.create_task(self._listen(channel, handler), name="redis-fanout-listener")

    async def aclose(self) -> None:  # type: ignore[override]
        self._stopping.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # pragma: no cover
                logger.warning("redis_fanout_close_failed", error=str(exc))
        self._task = None
        self._client = None
        self.connected = False
