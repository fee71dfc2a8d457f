"""In-process subscriber registry.

Keeps track of the streams connected to this instance and fans a frame
out to all of them. Cross-instance broadcast is handled by a FanoutPort
implementation.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from core.logging_config import get_logger
from domain.broadcast.event import Frame
from infrastructure.realtime.subscriber import Subscriber


logger = get_logger(__name__)


class LocalRegistry:
    """Manage per-process subscribers."""

    def __init__(self) -> None:
        # subscriber id -> Subscriber
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()
        self._evicted = 0

    async def register(self, subscriber: Subscriber) -> str:
        async with self._lock:
            self._subscribers[subscriber.id] = subscriber
            count = len(self._subscribers)
        logger.info("subscriber_registered", subscriber_id=subscriber.id, subscribers=count)
        return subscriber.id

    async def unregister(self, handle: str, *, reason: str = "disconnected") -> bool:
        """Remove a subscriber. Safe to call more than once."""
        async with self._lock:
            subscriber = self._subscribers.pop(handle, None)
            count = len(self._subscribers)
        if subscriber is None:
            return False
        subscriber.close(reason)
        logger.info("subscriber_unregistered", subscriber_id=handle, reason=reason, subscribers=count)
        return True

    async def deliver_all(self, frame: Frame) -> int:
        """Offer a frame to every subscriber; returns the number reached.

        A subscriber that cannot take the frame is closed and removed here;
        the failure never reaches the caller.
        """
        delivered = 0
        failed: List[Subscriber] = []
        async with self._lock:
            for subscriber in self._subscribers.values():
                if subscriber.offer(frame):
                    delivered += 1
                else:
                    failed.append(subscriber)
            for subscriber in failed:
                self._subscribers.pop(subscriber.id, None)
            self._evicted += len(failed)
        for subscriber in failed:
            subscriber.close("send_queue_overflow")
            logger.warning(
                "subscriber_evicted",
                subscriber_id=subscriber.id,
                event_type=frame.event,
                frame_id=frame.id,
            )
        return delivered

    async def close_all(self, reason: str = "shutdown") -> int:
        async with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close(reason)
        if subscribers:
            logger.info("subscribers_closed", count=len(subscribers), reason=reason)
        return len(subscribers)

    def get(self, handle: str) -> Optional[Subscriber]:
        return self._subscribers.get(handle)

    def count(self) -> int:
        return len(self._subscribers)

    @property
    def evicted(self) -> int:
        """Subscribers dropped because they could not keep up."""
        return self._evicted
