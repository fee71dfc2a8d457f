"""
Redis客户端 - 发布/订阅与连接生命周期管理
"""
from __future__ import annotations

import asyncio
import socket
from typing import Any, AsyncGenerator, Callable, Dict, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import TransportFailureException

logger = get_logger(__name__)


class RedisClient:
    """
    命名空间隔离的 Redis 客户端

    特性:
    - 频道名自动添加命名空间前缀
    - 发布失败以 TransportFailureException 抛出（调用方决定如何降级）
    - 订阅以异步生成器形式返回消息
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    def _strip_namespace(self, key: str) -> str:
        if self._namespace and key.startswith(f"{self._namespace}:"):
            return key[len(self._namespace) + 1:]
        return key

    async def publish(self, channel: str, message: str) -> int:
        """
        发布消息到频道

        Args:
            channel: 频道名称
            message: 已序列化的消息

        Returns:
            接收消息的订阅者数量
        """
        formatted_channel = self._format_key(channel)
        try:
            receivers = await self._client.publish(formatted_channel, message)
        except (RedisError, OSError) as e:
            logger.error("redis_publish_failed", channel=formatted_channel, error=str(e))
            raise TransportFailureException(
                "Redis publish failed", details={"channel": channel, "reason": str(e)}
            ) from e
        return receivers

    async def subscribe(
        self,
        *channels: str,
        on_subscribed: Optional[Callable[[], None]] = None,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """
        订阅频道，返回消息生成器

        生成器在首次迭代时才真正订阅；订阅成功后调用 on_subscribed。

        Args:
            channels: 要订阅的频道列表
            on_subscribed: 订阅确认后的回调（可选）

        Yields:
            {'channel': 频道（去掉命名空间）, 'data': 原始字符串}
        """
        formatted_channels = [self._format_key(c) for c in channels]
        pubsub = self._client.pubsub()

        try:
            await pubsub.subscribe(*formatted_channels)
            logger.debug("redis_subscribed", channels=formatted_channels)
            if on_subscribed is not None:
                on_subscribed()
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                yield {
                    "channel": self._strip_namespace(message["channel"]),
                    "data": message["data"],
                }
        finally:
            try:
                await pubsub.unsubscribe(*formatted_channels)
                await pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.warning("redis_unsubscribe_failed", error=str(e))

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            return await self._client.ping()
        except (RedisError, OSError) as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False


# ============= 单例模式管理 =============

_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """
    初始化Redis客户端

    Args:
        namespace: 命名空间（默认 settings.redis.namespace）
        **kwargs: 其他Redis连接参数

    Returns:
        RedisClient实例
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

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=keepalive_opts,
            **kwargs,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error("redis_init_failed", error=str(e))
            await client.aclose()
            raise

        _redis_client = client
        _cache_instance = RedisClient(client=client, namespace=namespace or settings.redis.namespace)
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
            logger.info("redis_closed")
        except Exception as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _redis_client = None
            _cache_instance = None


__all__ = [
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
