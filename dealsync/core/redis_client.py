"""
Redis client for OAuth state and sync job coordination.

Keys used by the service:
    oauth:state:{state}            pending consent flows (TTL)
    sync:lock:{job_type}:{config}  admission locks, value is the owning job id
    sync:job:{job_id}              job records (JSON)
    sync:jobs, sync:jobs:config:*  job indexes (sorted sets scored by enqueue ms)
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from dealsync.config import get_settings

logger = logging.getLogger(__name__)

# Delete only while the key still holds the caller's value
COMPARE_AND_DELETE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisClient:
    """Async Redis wrapper with the lock, record and index operations the queue needs."""

    def __init__(self, url: str):
        self.url = url
        self._client: Optional[redis.Redis] = None
        self._compare_and_delete = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                health_check_interval=30,
            )
            self._compare_and_delete = self._client.register_script(COMPARE_AND_DELETE)
            logger.debug(f"Redis client created for {self.url}")

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            self._compare_and_delete = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    # ============== Plain values ==============

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self.client.set(key, value, ex=ttl or None)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    # ============== Locks ==============

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """SET NX EX: True when this caller now holds ``key``."""
        return bool(await self.client.set(key, value, ex=ttl, nx=True))

    async def delete_if_value(self, key: str, value: str) -> bool:
        """Atomically delete ``key`` if it still holds ``value``."""
        if self._compare_and_delete is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return bool(await self._compare_and_delete(keys=[key], args=[value]))

    # ============== JSON records ==============

    async def get_json(self, key: str) -> Optional[dict]:
        value = await self.get(key)
        return json.loads(value) if value else None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.set(key, json.dumps(value, default=str), ttl)

    async def pop_json(self, key: str) -> Optional[dict]:
        """GETDEL: single-use values such as OAuth states."""
        value = await self.client.getdel(key)
        return json.loads(value) if value else None

    # ============== Indexes ==============

    async def zadd(self, key: str, member: str, score: float) -> None:
        await self.client.zadd(key, {member: score})

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        """Members newest first (highest score first)."""
        return await self.client.zrevrange(key, start, end)

    async def zrem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self.client.zrem(key, *members)


_redis_client: Optional[RedisClient] = None


async def get_redis() -> RedisClient:
    """Process-wide client, connected on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient(get_settings().redis_url)
        await _redis_client.connect()
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.disconnect()
        _redis_client = None
