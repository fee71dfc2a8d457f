"""
Broadcast domain objects: the immutable Event and the Frame delivered to
a subscriber's stream.
"""
from __future__ import annotations

import copy
import json
import threading
import time
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from domain.common.exceptions import InvalidInputException


class Event(BaseModel):
    """A published event. Immutable once created.

    Fields:
      - event_id: unique id of this publish (absorbs fanout redelivery)
      - event_type: SSE event name, e.g. ``message`` / ``update`` / ``system``
      - payload: JSON-serializable value, never ``None``
      - timestamp: epoch milliseconds, strictly increasing per instance
      - origin_instance_id: instance that first accepted the publish
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    event_type: str
    payload: Any
    timestamp: int
    origin_instance_id: str

    @field_validator("payload", mode="before")
    @classmethod
    def _detach_payload(cls, value: Any) -> Any:
        # the caller keeps its dict/list; history must not change with it
        try:
            return copy.deepcopy(value)
        except (TypeError, copy.Error) as exc:
            raise ValueError(f"payload cannot be copied: {exc}") from exc

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Event":
        return cls.model_validate_json(raw)


class Frame(BaseModel):
    """One delivered unit on a subscriber stream: ``{id, event, data}``."""

    model_config = ConfigDict(frozen=True)

    id: int
    event: str
    data: str


class MonotonicClock:
    """Epoch-millisecond stamps that never repeat or go backwards.

    Wall-clock time is used when it moves forward; otherwise the previous
    stamp is bumped by one.
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        now = int(time.time() * 1000)
        with self._lock:
            self._last = now if now > self._last else self._last + 1
            return self._last


def validate_publish(event_type: Any, payload: Any) -> str:
    """Check a publish request; return the normalized event type."""
    if not isinstance(event_type, str) or not event_type.strip():
        raise InvalidInputException("event type must be a non-empty string", field="event")
    if "\n" in event_type or "\r" in event_type:
        raise InvalidInputException("event type must not contain line breaks", field="event")
    if payload is None:
        raise InvalidInputException("payload is required", field="data")
    return event_type.strip()


def serialize_payload(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def event_frame(token: int, event: Event) -> Frame:
    return Frame(id=token, event=event.event_type, data=serialize_payload(event.payload))


__all__ = [
    "Event",
    "Frame",
    "MonotonicClock",
    "validate_publish",
    "serialize_payload",
    "event_frame",
]
