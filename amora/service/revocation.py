"""Registry of access tokens that were explicitly invalidated before expiry."""

from __future__ import annotations

import hashlib
import threading
import time
from typing import Callable, Dict, Optional

from amora.logging import get_logger
from amora.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RevocationRegistry:
    """Revoked-token set with per-entry expiry.

    Entries live in Redis when a cache is configured. Without one, an
    in-process map of digest to expiry timestamp gives the same semantics for
    single-process development and tests.
    """

    def __init__(
        self,
        cache: Optional[RedisCache] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self._clock = clock
        self._local: Dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return "redis" if self.cache else "memory"

    async def revoke(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        digest = token_digest(token)
        if self.cache:
            try:
                await self.cache.revoke_access_token(digest, ttl_seconds)
            except Exception as exc:
                logger.error("token_revoke_failed", backend="redis", error=str(exc))
                raise
            return
        with self._lock:
            self._purge_expired()
            self._local[digest] = self._clock() + ttl_seconds

    async def is_revoked(self, token: str) -> bool:
        digest = token_digest(token)
        if self.cache:
            try:
                return await self.cache.is_access_token_revoked(digest)
            except Exception as exc:
                # Fail closed
                logger.warning("revocation_check_failed", backend="redis", error=str(exc))
                return True
        with self._lock:
            expires_at = self._local.get(digest)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._local[digest]
                return False
            return True

    def _purge_expired(self) -> None:
        now = self._clock()
        for digest in [d for d, exp in self._local.items() if exp <= now]:
            del self._local[digest]


__all__ = ["RevocationRegistry", "token_digest"]
