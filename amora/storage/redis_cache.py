from __future__ import annotations

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper holding the access-token revocation list."""

    REVOKED_PREFIX = "auth:access:revoked:"

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before the registry relies on it."""
        # A short-lived sync client keeps the async pool off the startup event loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def revoke_access_token(self, digest: str, ttl_seconds: int) -> None:
        """Mark a token digest revoked; Redis drops the key after ``ttl_seconds``."""
        if ttl_seconds > 0:
            await self.client.set(f"{self.REVOKED_PREFIX}{digest}", "1", ex=ttl_seconds)

    async def is_access_token_revoked(self, digest: str) -> bool:
        return bool(await self.client.exists(f"{self.REVOKED_PREFIX}{digest}"))

    async def close(self) -> None:
        await self.client.close()
        await self.client.connection_pool.disconnect()
