"""A single streaming client and its bounded outbound queue."""
from __future__ import annotations

import asyncio
from collections import deque
from typing import AsyncIterator, Deque, Optional
from uuid import uuid4

from core.logging_config import get_logger
from domain.broadcast.event import Frame
from domain.common.exceptions import SubscriberClosed


logger = get_logger(__name__)

OVERFLOW_POLICIES = {"disconnect", "drop_oldest", "drop_new"}


class Subscriber:
    """One open stream.

    Producers never await the client: frames are offered to a bounded queue
    and the stream task drains it. What happens when the queue is full is
    decided by ``overflow_policy``:

      - ``disconnect`` (default): the subscriber is closed and removed
      - ``drop_oldest``: discard the oldest pending frame
      - ``drop_new``: discard the incoming frame

    Connect-time frames (connected notice, history snapshot) go through
    ``greet`` instead: they sit ahead of the queue, are always read first
    and never count against the limit, so no policy can evict them.
    """

    def __init__(
        self,
        *,
        queue_max: int = 100,
        overflow_policy: str = "disconnect",
        subscriber_id: Optional[str] = None,
    ) -> None:
        policy = (overflow_policy or "disconnect").lower()
        if policy not in OVERFLOW_POLICIES:
            logger.warning("subscriber_overflow_policy_invalid", policy=policy, fallback="disconnect")
            policy = "disconnect"
        self.id = subscriber_id or uuid4().hex
        self._policy = policy
        # one extra slot so the close sentinel always fits
        self._queue: asyncio.Queue[Optional[Frame]] = asyncio.Queue(maxsize=max(1, queue_max) + 1)
        self._limit = max(1, queue_max)
        self._greeting: Deque[Frame] = deque()
        self._closed = False
        self.close_reason: Optional[str] = None
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._greeting) + self._queue.qsize()

    def greet(self, frame: Frame) -> bool:
        """Queue a connect-time frame ahead of live traffic, outside the limit."""
        if self._closed:
            return False
        self._greeting.append(frame)
        return True

    def offer(self, frame: Frame) -> bool:
        """Enqueue without blocking. ``False`` means the subscriber must go."""
        if self._closed:
            return False
        if self._queue.qsize() < self._limit:
            self._queue.put_nowait(frame)
            return True
        if self._policy == "drop_new":
            self.dropped += 1
            return True
        if self._policy == "drop_oldest":
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:  # pragma: no cover
                pass
            self._queue.put_nowait(frame)
            self.dropped += 1
            return True
        return False

    def close(self, reason: Optional[str] = None) -> None:
        """Idempotent. Pending frames are discarded and the reader is woken."""
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        self._greeting.clear()
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._queue.put_nowait(None)

    async def receive(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """Next frame, or ``None`` if nothing arrived within ``timeout``.

        Raises ``SubscriberClosed`` once the subscriber has been closed.
        """
        if self._closed and self._queue.empty():
            raise SubscriberClosed(self.id, self.close_reason)
        if self._greeting:
            return self._greeting.popleft()
        try:
            if timeout and timeout > 0:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            else:
                item = await self._queue.get()
        except asyncio.TimeoutError:
            return None
        if item is None:
            raise SubscriberClosed(self.id, self.close_reason)
        return item

    async def frames(self, heartbeat_interval: Optional[float] = None) -> AsyncIterator[Optional[Frame]]:
        """Yield frames until closed; ``None`` marks an idle heartbeat tick."""
        while True:
            try:
                frame = await self.receive(timeout=heartbeat_interval)
            except SubscriberClosed:
                return
            yield frame

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id!r}, closed={self._closed})"
