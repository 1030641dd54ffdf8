"""Redis Pub/Sub based RealtimeBrokerPort implementation.

Reuses the shared RedisClient from infrastructure.external.cache.
Publishes to per-channel Redis channels `rt:channel:{name}` and
pattern-subscribes `rt:channel:*` so every process fans frames out to
its own local connections.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from application.ports.realtime import Envelope, RealtimeBrokerPort, Handler
from core.logging_config import get_logger
from infrastructure.external.cache import get_redis_client, RedisClient


logger = get_logger(__name__)

CHANNEL_PREFIX = "rt:channel:"


class RedisRealtimeBroker(RealtimeBrokerPort):
    def __init__(self, client: Optional[RedisClient] = None) -> None:
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._handler: Optional[Handler] = None
        self._client: Optional[RedisClient] = client

    @staticmethod
    def _redis_channel(channel: str) -> str:
        return f"{CHANNEL_PREFIX}{channel}"

    async def publish(self, channel: str, envelope: Envelope) -> None:  # type: ignore[override]
        if self._client is None:
            self._client = await get_redis_client()
        if envelope.channel is None:
            envelope = envelope.model_copy(update={"channel": channel})
        redis_channel = self._redis_channel(channel)
        try:
            # RedisClient handles JSON serialization internally
            await self._client.publish(redis_channel, envelope.model_dump(mode="json"))
        except Exception as exc:  # pragma: no cover
            logger.error("redis_publish_failed", channel=redis_channel, error=str(exc))

    async def _listen(self) -> None:
        assert self._client is not None and self._handler is not None
        pattern = f"{CHANNEL_PREFIX}*"
        try:
            logger.info("redis_pubsub_subscribed", pattern=pattern)
            async for message in self._client.psubscribe(pattern):
                if self._stopping.is_set():
                    break
                try:
                    data = message.get("data")  # already deserialized (dict)
                    if not isinstance(data, dict):
                        continue
                    env = Envelope.model_validate(data)
                    await self._handler(env)
                except Exception as exc:  # pragma: no cover
                    logger.warning("redis_pubsub_parse_failed", error=str(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pragma: no cover
            logger.error("redis_pubsub_listen_failed", error=str(exc))

    async def subscribe(self, handler: Handler) -> None:  # type: ignore[override]
        self._handler = handler
        if self._client is None:
            self._client = await get_redis_client()
        self._task = asyncio.create_task(self._listen(), name="redis-realtime-listener")

    async def aclose(self) -> None:  # type: ignore[override]
        self._stopping.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._client = None
