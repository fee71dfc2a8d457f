"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import os

# Single-instance, no background jobs: tests drive publishes explicitly
os.environ["REALTIME_BROKER"] = "inmemory"
os.environ.pop("REDIS__URL", None)
os.environ.setdefault("BROADCAST__TICKER_INTERVAL_S", "0")
os.environ.setdefault("BROADCAST__ANNOUNCE_STARTUP", "false")
os.environ.setdefault("DEBUG", "false")

from typing import Any, List, Optional, Tuple

import pytest

from application.services.broadcast_service import Broadcaster
from domain.broadcast.event import Frame
from domain.broadcast.history import HistoryBuffer
from domain.common.exceptions import SubscriberClosed, TransportFailureException
from infrastructure.realtime.brokers import InMemoryFanoutBroker
from infrastructure.realtime.registry import LocalRegistry
from infrastructure.realtime.subscriber import Subscriber


class RecordingFanout:
    """Fanout double that records what was published."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, str]] = []
        self.handlers = []

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, message))

    async def subscribe(self, channel: str, handler) -> None:
        self.handlers.append((channel, handler))

    async def aclose(self) -> None:
        self.handlers.clear()


class FailingFanout(RecordingFanout):
    async def publish(self, channel: str, message: str) -> None:
        raise TransportFailureException("redis down")


def make_broadcaster(
    *,
    instance_id: str = "instance-a",
    fanout: Optional[Any] = None,
    capacity: int = 100,
    default_limit: int = 10,
    queue_max: int = 100,
    overflow_policy: str = "disconnect",
) -> Broadcaster:
    return Broadcaster(
        instance_id=instance_id,
        history=HistoryBuffer(capacity=capacity, default_limit=default_limit),
        registry=LocalRegistry(),
        fanout=fanout if fanout is not None else RecordingFanout(),
        channel="test-events",
        queue_max=queue_max,
        overflow_policy=overflow_policy,
    )


async def drain(subscriber: Subscriber, timeout: float = 0.01) -> List[Frame]:
    """Collect every frame currently queued for a subscriber."""
    frames: List[Frame] = []
    while True:
        try:
            frame = await subscriber.receive(timeout=timeout)
        except SubscriberClosed:
            return frames
        if frame is None:
            return frames
        frames.append(frame)


@pytest.fixture
def recording_fanout() -> RecordingFanout:
    return RecordingFanout()


@pytest.fixture
def broadcaster(recording_fanout) -> Broadcaster:
    return make_broadcaster(fanout=recording_fanout)


@pytest.fixture
def shared_broker() -> InMemoryFanoutBroker:
    return InMemoryFanoutBroker()
