from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

logger = structlog.get_logger(__name__)


def create_client(redis_url: str) -> Redis:
    return Redis.from_url(redis_url, decode_responses=True)


class SharedCache:
    """L2: redis with native per-key expiry.

    A failing redis is treated as an empty cache; nothing here raises.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        try:
            raw = await self._client.get(key)
        except (RedisError, OSError) as exc:
            logger.warning("shared_cache_read_failed", key=key, error=str(exc))
            return None
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as exc:
            logger.warning("shared_cache_write_failed", key=key, error=str(exc))

    async def set_if_absent(self, key: str, ttl_seconds: int, value: str) -> bool:
        try:
            return bool(await self._client.set(key, value, ex=ttl_seconds, nx=True))
        except (RedisError, OSError) as exc:
            logger.warning("shared_cache_write_failed", key=key, error=str(exc))
            return False

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except (RedisError, OSError) as exc:
            logger.warning("shared_cache_read_failed", key=key, error=str(exc))
            return False

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError) as exc:
            logger.warning("shared_cache_delete_failed", key=key, error=str(exc))

    async def close(self) -> None:
        await self._client.aclose()
