"""
Per-pet merge locks.

Merges for the same pet are serialized so two concurrent approvals cannot
both miss each other's records during duplicate detection. The lock lives in
Redis when it is reachable, so it holds across API replicas; otherwise an
in-process ``asyncio.Lock`` per pet is used (single-process deployments and
tests).
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from src.core.config import settings
from src.core.exceptions import InvalidStateError
from src.core.logging import get_logger

logger = get_logger(__name__)

# Redis key prefix
LOCK_PREFIX = "petrecords:merge-lock:"

# In-memory fallback
_memory_locks: dict[str, asyncio.Lock] = {}
# Holders plus waiters per key
_memory_lock_users: dict[str, int] = {}

# Redis client (lazy init)
_redis_client: aioredis.Redis | None = None
_redis_available: bool | None = None


async def _get_redis() -> aioredis.Redis | None:
    """Get or create the Redis client. Returns None if disabled or unavailable."""
    global _redis_client, _redis_available

    if not settings.redis_locks_enabled or _redis_available is False:
        return None

    if _redis_client is not None:
        return _redis_client

    client = aioredis.Redis.from_url(settings.redis_dsn, socket_connect_timeout=2)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        _redis_available = False
        await client.aclose()
        logger.warning("Merge locks: Redis unavailable, using in-process locks", error=str(e))
        return None

    _redis_client = client
    _redis_available = True
    logger.info("Merge locks: using Redis", url=settings.redis_dsn)
    return _redis_client


@asynccontextmanager
async def pet_merge_lock(pet_id: UUID, timeout: float | None = None) -> AsyncIterator[None]:
    """
    Hold the merge lock for ``pet_id`` for the duration of the block.

    Raises:
        InvalidStateError: when the lock cannot be acquired within ``timeout``
    """
    timeout = timeout or settings.merge_lock_timeout_seconds
    key = f"{LOCK_PREFIX}{pet_id}"

    client = await _get_redis()
    if client is not None:
        lock = client.lock(key, timeout=timeout * 2, blocking_timeout=timeout)
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise InvalidStateError("Could not lock pet records for merging") from e
        if not acquired:
            raise InvalidStateError("Another review for this pet is in progress. Please retry.")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held; the merge transaction already finished
                logger.warning("Merge lock expired before release", pet_id=str(pet_id))
        return

    lock = _memory_locks.setdefault(key, asyncio.Lock())
    _memory_lock_users[key] = _memory_lock_users.get(key, 0) + 1
    try:
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise InvalidStateError("Another review for this pet is in progress. Please retry.") from e
        try:
            yield
        finally:
            lock.release()
    finally:
        _memory_lock_users[key] -= 1
        if not _memory_lock_users[key]:
            # Nobody holds or waits; drop the entry
            del _memory_lock_users[key]
            del _memory_locks[key]
