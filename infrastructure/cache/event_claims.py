"""Redis 事件占用实现（SET NX + TTL）

同一渠道事件被并发投递时，只有占用成功的请求继续处理；处理抛出异常时释放占用，
以便渠道的自动重投仍能被处理。流水存在性检查仍是最终的幂等依据，Redis 不可用时
降级为放行。
"""
from __future__ import annotations

import asyncio
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class RedisEventClaimStore:
    """基于 Redis 的事件占用存储"""

    def __init__(self, client: aioredis.Redis, *, ttl: int, namespace: str = "") -> None:
        self._client = client
        self._ttl = ttl
        self._namespace = namespace.strip(":")

    def _format_key(self, event_id: str) -> str:
        key = f"webhook:event:{event_id}"
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def claim(self, event_id: str) -> bool:
        try:
            claimed = await self._client.set(self._format_key(event_id), "1", nx=True, ex=self._ttl)
        except RedisError as exc:
            logger.warning("event_claim_unavailable", event_id=event_id, error=str(exc))
            return True
        return bool(claimed)

    async def release(self, event_id: str) -> None:
        try:
            await self._client.delete(self._format_key(event_id))
        except RedisError as exc:
            logger.warning("event_claim_release_failed", event_id=event_id, error=str(exc))


_client: Optional[aioredis.Redis] = None
_store: Optional[RedisEventClaimStore] = None
_lock = asyncio.Lock()


async def init_event_claim_store(ttl: int) -> RedisEventClaimStore:
    """初始化全局事件占用存储（需要配置 redis.url）"""
    global _client, _store

    if _store is not None:
        return _store

    async with _lock:
        if _store is not None:
            return _store
        if not settings.redis.url:
            raise RuntimeError("redis.url 未配置，无法初始化事件占用存储")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )
        await client.ping()
        _client = client
        _store = RedisEventClaimStore(client, ttl=ttl, namespace=settings.redis.namespace)
        logger.info("event_claim_store_initialized", namespace=settings.redis.namespace, ttl=ttl)
        return _store


def get_event_claim_store() -> Optional[RedisEventClaimStore]:
    return _store


async def shutdown_event_claim_store() -> None:
    global _client, _store

    if _client is not None:
        try:
            await _client.aclose()
            logger.info("event_claim_store_closed")
        finally:
            _client = None
            _store = None
