"""
Bounded replay buffer of the most recent events seen by this instance.
"""
from __future__ import annotations

import threading
from collections import deque
from typing import Deque, List, Optional

from domain.broadcast.event import Event


class HistoryBuffer:
    """Ring of the last ``capacity`` events, oldest first.

    Eviction is strict FIFO by insertion order, regardless of event type or
    timestamp. Readers that display history chronologically should sort by
    ``timestamp`` themselves: relayed events can arrive out of timestamp order.
    """

    def __init__(self, capacity: int = 100, default_limit: int = 10) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be >= 1")
        self._capacity = capacity
        self._default_limit = max(1, min(default_limit, capacity))
        self._events: Deque[Event] = deque(maxlen=capacity)
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def default_limit(self) -> int:
        return self._default_limit

    def append(self, event: Event) -> None:
        with self._lock:
            if len(self._events) == self._capacity:
                evicted = self._events.popleft()
                self._ids.discard(evicted.event_id)
            self._events.append(event)
            self._ids.add(event.event_id)

    def snapshot(self, limit: Optional[int] = None) -> List[Event]:
        """Return up to ``limit`` most recent events, oldest first.

        ``None`` or ``limit <= 0`` means the default limit; anything above
        the capacity is clamped to it.
        """
        if limit is None or limit <= 0:
            limit = self._default_limit
        limit = min(limit, self._capacity)
        with self._lock:
            items = list(self._events)
        return items[-limit:]

    def contains(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._ids

    def __len__(self) -> int:
        return len(self._events)
