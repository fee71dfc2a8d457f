import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from domain.common.exceptions import TransportFailureException
from infrastructure.external.cache import RedisClient
from infrastructure.realtime.brokers import RedisFanoutBroker


class FlakyClient:
    """First subscription fails, the next one delivers a single message."""

    def __init__(self) -> None:
        self.subscribe_calls = 0
        self.published = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def subscribe(self, *channels: str, on_subscribed=None):
        self.subscribe_calls += 1
        if self.subscribe_calls == 1:
            raise ConnectionError("connection refused")
        if on_subscribed is not None:
            on_subscribed()
        yield {"channel": channels[0], "data": "hello"}
        await asyncio.Event().wait()


class BrokenPublishClient(FlakyClient):
    async def publish(self, channel: str, message: str) -> int:
        raise TransportFailureException("Redis publish failed")


class FakePubSub:
    def __init__(self) -> None:
        self.subscribed = ()
        self.unsubscribed = ()
        self.closed = False
        self.events = []

    async def subscribe(self, *channels):
        self.subscribed = channels
        self.events.append("subscribe")

    async def listen(self):
        yield {"type": "subscribe", "channel": "ns:ch", "data": 1}
        yield {"type": "message", "channel": "ns:ch", "data": "payload"}

    async def unsubscribe(self, *channels):
        self.unsubscribed = channels

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published = []
        self.pubsub_instance = FakePubSub()

    async def publish(self, channel, message):
        if self.fail:
            raise RedisConnectionError("connection reset")
        self.published.append((channel, message))
        return 2

    def pubsub(self):
        return self.pubsub_instance

    async def ping(self):
        return not self.fail


@pytest.mark.asyncio
async def test_listener_reconnects_after_failure():
    client = FlakyClient()
    broker = RedisFanoutBroker(client, initial_backoff_s=0.01, max_backoff_s=0.05)
    received = []

    async def handler(data):
        received.append(data)

    await broker.subscribe("events", handler)
    for _ in range(200):
        if received:
            break
        await asyncio.sleep(0.01)
    assert broker.connected
    await broker.aclose()

    assert received == ["hello"]
    assert broker.reconnects >= 1
    assert client.subscribe_calls >= 2
    assert not broker.connected


@pytest.mark.asyncio
async def test_listener_is_not_connected_until_subscription_confirmed():
    client = FlakyClient()
    broker = RedisFanoutBroker(client, initial_backoff_s=5)

    async def handler(data):
        pass

    await broker.subscribe("events", handler)
    for _ in range(100):
        if client.subscribe_calls:
            break
        await asyncio.sleep(0.01)
    # first attempt failed before subscribing; now waiting out the backoff
    assert client.subscribe_calls == 1
    assert not broker.connected
    await broker.aclose()


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_the_listener():
    client = FlakyClient()
    client.subscribe_calls = 1  # skip the failing first attempt
    broker = RedisFanoutBroker(client, initial_backoff_s=0.01)
    calls = []

    async def handler(data):
        calls.append(data)
        raise RuntimeError("boom")

    await broker.subscribe("events", handler)
    for _ in range(100):
        if calls:
            break
        await asyncio.sleep(0.01)
    assert broker._task is not None and not broker._task.done()
    await broker.aclose()
    assert calls == ["hello"]


@pytest.mark.asyncio
async def test_publish_goes_through_client():
    client = FlakyClient()
    broker = RedisFanoutBroker(client)
    await broker.publish("events", "{}")
    assert client.published == [("events", "{}")]


@pytest.mark.asyncio
async def test_publish_failure_surfaces_as_transport_failure():
    broker = RedisFanoutBroker(BrokenPublishClient())
    with pytest.raises(TransportFailureException):
        await broker.publish("events", "{}")


@pytest.mark.asyncio
async def test_publish_without_redis_configured_is_transport_failure():
    broker = RedisFanoutBroker()
    with pytest.raises(TransportFailureException) as ei:
        await broker.publish("events", "{}")
    assert ei.value.details["channel"] == "events"


@pytest.mark.asyncio
async def test_redis_client_namespaces_channels():
    raw = FakeRedis()
    client = RedisClient(raw, namespace="ns")
    assert await client.publish("ch", "m") == 2
    assert raw.published == [("ns:ch", "m")]


@pytest.mark.asyncio
async def test_redis_client_wraps_connection_errors():
    client = RedisClient(FakeRedis(fail=True), namespace="ns")
    with pytest.raises(TransportFailureException) as ei:
        await client.publish("ch", "m")
    assert ei.value.details["channel"] == "ch"


@pytest.mark.asyncio
async def test_redis_client_subscribe_strips_namespace_and_cleans_up():
    raw = FakeRedis()
    client = RedisClient(raw, namespace="ns")
    pubsub = raw.pubsub_instance
    stream = client.subscribe("ch", on_subscribed=lambda: pubsub.events.append("confirmed"))

    assert pubsub.events == []
    message = await stream.__anext__()
    await stream.aclose()

    assert pubsub.events == ["subscribe", "confirmed"]
    assert message == {"channel": "ch", "data": "payload"}
    assert raw.pubsub_instance.subscribed == ("ns:ch",)
    assert raw.pubsub_instance.unsubscribed == ("ns:ch",)
    assert raw.pubsub_instance.closed
    assert await client.health_check() is True
