import asyncio
import json

import pytest

from application.ports.realtime import Envelope
from infrastructure.external.cache import RedisClient
from infrastructure.realtime.brokers import InMemoryRealtimeBroker, RedisRealtimeBroker


pytestmark = pytest.mark.asyncio


async def test_inmemory_broker_fills_missing_channel():
    broker = InMemoryRealtimeBroker()
    received = []

    async def handler(env: Envelope) -> None:
        received.append(env)

    await broker.subscribe(handler)
    await broker.publish("appearance_channel", Envelope(type="message", data={"id": 1}))

    assert received[0].channel == "appearance_channel"


async def test_inmemory_broker_isolates_failing_handler():
    broker = InMemoryRealtimeBroker()
    received = []

    async def broken(env: Envelope) -> None:
        raise RuntimeError("boom")

    async def healthy(env: Envelope) -> None:
        received.append(env)

    await broker.subscribe(broken)
    await broker.subscribe(healthy)
    await broker.publish("appearance_channel", Envelope(type="message", channel="appearance_channel"))

    assert len(received) == 1


async def test_inmemory_broker_close_drops_handlers():
    broker = InMemoryRealtimeBroker()
    received = []

    async def handler(env: Envelope) -> None:
        received.append(env)

    await broker.subscribe(handler)
    await broker.aclose()
    await broker.publish("appearance_channel", Envelope(type="message"))

    assert received == []


class FakeRedisClient:
    """Stands in for infrastructure.external.cache.RedisClient."""

    def __init__(self, incoming=None) -> None:
        self.published: list = []
        self._incoming = list(incoming or [])

    async def publish(self, channel: str, message) -> int:
        self.published.append((channel, message))
        return 1

    async def psubscribe(self, *patterns: str):
        for message in self._incoming:
            yield message
        await asyncio.Event().wait()


async def test_redis_broker_publishes_to_prefixed_channel():
    fake = FakeRedisClient()
    broker = RedisRealtimeBroker(fake)

    await broker.publish("appearance_channel", Envelope(type="message", data={"id": 1, "online": True}))

    channel, message = fake.published[0]
    assert channel == "rt:channel:appearance_channel"
    assert message["channel"] == "appearance_channel"
    assert message["data"] == {"id": 1, "online": True}


async def test_redis_broker_dispatches_incoming_messages():
    incoming = [
        {"channel": "rt:channel:appearance_channel", "data": "garbage", "pattern": "rt:channel:*"},
        {
            "channel": "rt:channel:appearance_channel",
            "data": {"type": "message", "channel": "appearance_channel", "data": {"id": 5}},
            "pattern": "rt:channel:*",
        },
    ]
    broker = RedisRealtimeBroker(FakeRedisClient(incoming))
    received: list = []

    async def handler(env: Envelope) -> None:
        received.append(env)

    await broker.subscribe(handler)
    await asyncio.sleep(0.01)
    await broker.aclose()

    assert len(received) == 1
    assert received[0].data == {"id": 5}


class FakeRedis:
    def __init__(self) -> None:
        self.calls: list = []

    async def publish(self, channel: str, payload: str) -> int:
        self.calls.append((channel, payload))
        return 2


async def test_redis_client_namespaces_and_serializes():
    raw = FakeRedis()
    client = RedisClient(client=raw, namespace="appearance:")

    count = await client.publish("rt:channel:appearance_channel", {"id": 1})

    assert count == 2
    channel, payload = raw.calls[0]
    assert channel == "appearance:rt:channel:appearance_channel"
    assert json.loads(payload) == {"id": 1}
