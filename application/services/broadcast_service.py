"""Application service for the multi-instance broadcast engine.

The Broadcaster owns this instance's history buffer and subscriber
registry and bridges them to the fanout transport:

  publish          -> history + local subscribers + fanout (tagged with origin)
  fanout message   -> origin check -> history + local subscribers
  connect          -> connected notice -> history snapshot -> live stream
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, List, Optional, Union
from uuid import uuid4

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from application.ports.fanout import FanoutPort
from core.logging_config import get_logger
from domain.broadcast.event import (
    Event,
    Frame,
    MonotonicClock,
    event_frame,
    serialize_payload,
    validate_publish,
)
from domain.broadcast.history import HistoryBuffer
from domain.common.exceptions import FanoutPublishException, InvalidInputException
from infrastructure.realtime.registry import LocalRegistry
from infrastructure.realtime.subscriber import Subscriber


logger = get_logger(__name__)


def new_instance_id(prefix: Optional[str] = None) -> str:
    """Session-unique instance id; a restarted process never reuses one."""
    if prefix:
        return f"{prefix}-{uuid4().hex[:12]}"
    return uuid4().hex


class Broadcaster:
    def __init__(
        self,
        *,
        instance_id: str,
        history: HistoryBuffer,
        registry: LocalRegistry,
        fanout: FanoutPort,
        channel: str = "sse-events",
        queue_max: int = 100,
        overflow_policy: str = "disconnect",
    ) -> None:
        self._instance_id = instance_id
        self._history = history
        self._registry = registry
        self._fanout = fanout
        self._channel = channel
        self._queue_max = queue_max
        self._overflow_policy = overflow_policy
        self._clock = MonotonicClock()
        # serializes history append + local delivery so order matches per instance
        self._lock = asyncio.Lock()
        self._log = logger.bind(instance_id=instance_id)

    # Observability
    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def subscriber_count(self) -> int:
        return self._registry.count()

    @property
    def history_buffer(self) -> HistoryBuffer:
        return self._history

    @property
    def registry(self) -> LocalRegistry:
        return self._registry

    async def start(self) -> None:
        """Begin consuming events published by peer instances."""
        await self._fanout.subscribe(self._channel, self.on_fanout_message)
        self._log.info("broadcaster_started", channel=self._channel)

    async def aclose(self) -> None:
        """Close every local subscriber, then detach from the fanout channel."""
        closed = await self._registry.close_all("shutdown")
        try:
            await self._fanout.aclose()
        except Exception as exc:
            self._log.warning("fanout_close_failed", error=str(exc))
        self._log.info("broadcaster_stopped", subscribers_closed=closed)

    # Producers
    async def publish(self, event_type: str, payload: Any) -> Event:
        """Publish an event to local subscribers and to every peer instance.

        Not transactional: if the fanout step fails, the event has already
        been recorded and delivered locally and ``FanoutPublishException``
        (carrying the event) is raised.
        """
        event_type = validate_publish(event_type, payload)
        async with self._lock:
            try:
                event = Event(
                    event_type=event_type,
                    payload=payload,
                    timestamp=self._clock.next(),
                    origin_instance_id=self._instance_id,
                )
                message = event.to_json()
            except ValidationError as exc:
                raise InvalidInputException("payload is not a plain JSON value", field="data") from exc
            except PydanticSerializationError as exc:
                raise InvalidInputException("payload is not JSON serializable", field="data") from exc
            self._history.append(event)
            delivered = await self._registry.deliver_all(event_frame(self._clock.next(), event))

        try:
            await self._fanout.publish(self._channel, message)
        except Exception as exc:
            self._log.error(
                "fanout_publish_failed",
                event_id=event.event_id,
                event_type=event.event_type,
                error=str(exc),
            )
            raise FanoutPublishException(event, reason=str(exc)) from exc

        self._log.info(
            "event_published",
            event_id=event.event_id,
            event_type=event.event_type,
            delivered=delivered,
        )
        return event

    # Fanout callback (peer events -> local subscribers)
    async def on_fanout_message(self, message: Union[str, bytes, Event]) -> bool:
        """Deliver an event relayed by a peer. Returns whether it was delivered.

        Events that originated here are dropped (they were delivered at
        publish time), as are redeliveries of an event already buffered.
        Relayed events are never propagated again.
        """
        if isinstance(message, Event):
            event = message
        else:
            try:
                event = Event.from_json(message)
            except ValidationError as exc:
                self._log.warning("fanout_message_invalid", error=str(exc))
                return False

        if event.origin_instance_id == self._instance_id:
            return False

        async with self._lock:
            if self._history.contains(event.event_id):
                self._log.debug("fanout_message_duplicate", event_id=event.event_id)
                return False
            self._history.append(event)
            delivered = await self._registry.deliver_all(event_frame(self._clock.next(), event))

        self._log.info(
            "fanout_event_dispatched",
            event_id=event.event_id,
            event_type=event.event_type,
            origin=event.origin_instance_id,
            delivered=delivered,
        )
        return True

    # Connection lifecycle
    async def on_subscriber_connect(self, subscriber: Subscriber) -> str:
        """Register a subscriber after queuing its connected notice and history.

        Both frames are queued under the publish lock before registration, so
        no live event can overtake them.
        """
        async with self._lock:
            items = self._history.snapshot()
            greeted = subscriber.greet(self._frame("connected", {
                "message": "connected",
                "clientId": subscriber.id,
                "instanceId": self._instance_id,
            })) and subscriber.greet(self._frame("history", {
                "items": [e.to_wire() for e in items],
                "count": len(items),
            }))
            if not greeted:
                # closed before it was registered; its stream ends immediately
                subscriber.close("closed_before_connect")
                self._log.warning("subscriber_connect_refused", subscriber_id=subscriber.id)
                return subscriber.id
            handle = await self._registry.register(subscriber)
        self._log.info("subscriber_connected", subscriber_id=handle, history_sent=len(items))
        return handle

    async def on_subscriber_disconnect(self, handle: str) -> bool:
        removed = await self._registry.unregister(handle)
        if removed:
            self._log.info("subscriber_disconnected", subscriber_id=handle, subscribers=self.subscriber_count)
        return removed

    # HTTP-facing entry points
    async def new_connection(self) -> Subscriber:
        subscriber = Subscriber(queue_max=self._queue_max, overflow_policy=self._overflow_policy)
        await self.on_subscriber_connect(subscriber)
        return subscriber

    async def disconnect(self, handle: str) -> bool:
        return await self.on_subscriber_disconnect(handle)

    def history(self, limit: Optional[int] = None) -> List[Event]:
        return self._history.snapshot(limit)

    # Background jobs
    async def announce(self) -> None:
        """Tell every instance that this one is up."""
        try:
            await self.publish("system", {
                "text": f"Server instance {self._instance_id} started",
                "timestamp": self._clock.next(),
            })
        except FanoutPublishException:
            self._log.warning("startup_announcement_not_propagated")

    async def run_ticker(self, interval: float) -> None:
        """Publish a periodic ``update`` event until cancelled."""
        while True:
            await asyncio.sleep(interval)
            now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            try:
                await self.publish("update", {
                    "text": f"Server time: {now}",
                    "clients": self.subscriber_count,
                    "instanceId": self._instance_id,
                })
            except FanoutPublishException:
                # already logged; local subscribers still got it
                continue

    def _frame(self, name: str, data: Any) -> Frame:
        return Frame(id=self._clock.next(), event=name, data=serialize_payload(data))


__all__ = ["Broadcaster", "new_instance_id"]
