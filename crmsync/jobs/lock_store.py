"""Short-lived locks used to coalesce duplicate job scheduling."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from redis.asyncio import Redis

if TYPE_CHECKING:
    from crmsync.config import Settings

logger = logging.getLogger(__name__)


@runtime_checkable
class LockStore(Protocol):
    """Atomic set-if-absent store with expiry."""

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        """Take the lock. Returns False if it is already held."""
        ...

    async def release(self, key: str) -> None:
        """Drop the lock, whether or not it is held."""
        ...


class InMemoryLockStore:
    """Process-local lock store with automatic expiry.

    Safe under asyncio's cooperative model: acquire() has no await point
    between the check and the write. Not shared across processes; use
    :class:`RedisLockStore` when several workers schedule jobs.
    """

    def __init__(self) -> None:
        self._expires_at: dict[str, float] = {}

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        self.cleanup()
        now = time.monotonic()
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._expires_at[key] = now + ttl_seconds
        return True

    async def release(self, key: str) -> None:
        self._expires_at.pop(key, None)

    def is_locked(self, key: str) -> bool:
        """Return True while *key* is held and unexpired."""
        expires_at = self._expires_at.get(key)
        return expires_at is not None and expires_at > time.monotonic()

    def cleanup(self) -> None:
        """Remove expired entries."""
        now = time.monotonic()
        expired = [k for k, t in self._expires_at.items() if t <= now]
        for k in expired:
            del self._expires_at[k]


class RedisLockStore:
    """Lock store shared by every worker through Redis ``SET NX EX``."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisLockStore:
        return cls(Redis.from_url(url, decode_responses=True))

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        acquired = await self._client.set(key, "1", nx=True, ex=ttl_seconds)
        return bool(acquired)

    async def release(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_lock_store(settings: Settings) -> InMemoryLockStore | RedisLockStore:
    """Use Redis when ``REDIS_URL`` is configured, otherwise an in-memory store."""
    if settings.redis_url:
        logger.info("Using Redis lock store")
        return RedisLockStore.from_url(settings.redis_url)
    logger.info("Using in-memory lock store; enqueue deduplication is per process")
    return InMemoryLockStore()
