"""
Redis客户端 - 面向实时广播的 Pub/Sub 封装
"""
from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, AsyncGenerator, Callable, Dict, Optional

from redis import asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Redis客户端

    特性:
    - 自动序列化/反序列化（JSON）
    - 命名空间隔离（频道名自动加前缀）
    - 发布失败只记录日志，不向调用方抛出
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        serializer: Optional[Callable] = None,
        deserializer: Optional[Callable] = None
    ):
        self._client = client
        self._namespace = namespace.strip(":")
        self._serializer = serializer or self._default_serializer
        self._deserializer = deserializer or self._default_deserializer

    # ============= 工具方法 =============

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    def _strip_namespace(self, key: str) -> str:
        if self._namespace and key.startswith(f"{self._namespace}:"):
            return key[len(self._namespace) + 1:]
        return key

    def _default_serializer(self, value: Any) -> str:
        """默认序列化方法"""
        if isinstance(value, (str, int, float)):
            return str(value)
        try:
            return json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error("redis_serialize_failed", error=str(e))
            raise

    def _default_deserializer(self, value: Optional[str]) -> Any:
        """默认反序列化方法"""
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value

    def _process_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'channel': self._strip_namespace(message['channel']),
            'data': self._deserializer(message['data']),
            'pattern': message.get('pattern'),
        }

    # ============= Pub/Sub =============

    async def publish(self, channel: str, message: Any) -> int:
        """
        发布消息到频道

        Returns:
            接收消息的订阅者数量（失败时为0）
        """
        formatted_channel = self._format_key(channel)
        try:
            return await self._client.publish(formatted_channel, self._serializer(message))
        except RedisError as e:
            logger.error("redis_publish_failed", channel=formatted_channel, error=str(e))
            return 0

    async def psubscribe(self, *patterns: str) -> AsyncGenerator[Dict[str, Any], None]:
        """按模式订阅频道，返回消息生成器"""
        formatted_patterns = [self._format_key(p) for p in patterns]
        pubsub = self._client.pubsub()

        try:
            await pubsub.psubscribe(*formatted_patterns)
            async for message in pubsub.listen():
                if message['type'] == 'pmessage':
                    yield self._process_message(message)
        finally:
            await pubsub.punsubscribe(*formatted_patterns)
            await pubsub.aclose()


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """
    初始化Redis客户端（进程内单例）

    Args:
        namespace: 命名空间
        **kwargs: 其他Redis连接参数
    """
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        # 构建跨平台 keepalive 选项（若可用）
        keepalive_opts = {}
        if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
            keepalive_opts = {
                socket.TCP_KEEPIDLE: 1,
                socket.TCP_KEEPINTVL: 1,
                socket.TCP_KEEPCNT: 3,
            }

        try:
            client = aioredis.from_url(
                settings.redis.url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis.max_connections,
                socket_keepalive=True,
                socket_keepalive_options=keepalive_opts,
                **kwargs
            )
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, settings.redis.connect_attempts)),
                wait=wait_exponential(multiplier=0.2, min=0.1, max=2.0),
                retry=retry_if_exception_type(RedisConnectionError),
                reraise=True,
            ):
                with attempt:
                    await client.ping()
        except RedisError as e:
            logger.error("redis_init_failed", error=str(e))
            raise

        _redis_client = client
        _cache_instance = RedisClient(
            client=client,
            namespace=namespace or settings.redis.namespace,
        )
        logger.info("redis_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def get_redis_client() -> RedisClient:
    """获取全局Redis客户端实例"""
    if _cache_instance is None:
        return await init_redis_client()
    return _cache_instance


async def shutdown_redis_client() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis_shutdown")
        except RedisError as e:
            logger.error("redis_shutdown_failed", error=str(e))
        finally:
            _redis_client = None
            _cache_instance = None


__all__ = [
    'RedisClient',
    'init_redis_client',
    'get_redis_client',
    'shutdown_redis_client',
]
