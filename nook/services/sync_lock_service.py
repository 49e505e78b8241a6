import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import LockNotOwnedError, RedisError

from nook.core.config import settings
from nook.core.exceptions import SyncLockTimeout
from nook.core.logging import logger

class FamilySyncLocks:
    """
    Serializes sync work per family.

    With Redis connected the lock lives in Redis so every worker process sees
    it; without Redis, or when Redis fails mid-request, each process falls back
    to its own asyncio.Lock.
    """

    def __init__(self, lock_timeout: int = None):
        self.redis_client: Optional[redis.Redis] = None
        self.lock_timeout = lock_timeout or settings.SYNC_LOCK_TIMEOUT_SECONDS
        self._local_locks: Dict[int, asyncio.Lock] = {}
        self._warned_local = False

    async def connect(self) -> None:
        """Connect to Redis; on failure keep running with process-local locks."""
        try:
            self.redis_client = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                password=settings.REDIS_PASSWORD,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            )
            await self.redis_client.ping()
            logger.info(f"Sync locks using Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        except Exception as e:
            logger.warning(f"Redis unavailable for sync locks, using in-process locks: {e}")
            if self.redis_client is not None:
                await self.redis_client.aclose()
            self.redis_client = None

    async def disconnect(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Sync locks disconnected from Redis")

    def _key(self, family_id: int) -> str:
        return f"nook:sync-lock:family:{family_id}"

    def _local_lock(self, family_id: int) -> asyncio.Lock:
        lock = self._local_locks.get(family_id)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[family_id] = lock
        return lock

    async def _acquire_redis_lock(self, family_id: int):
        """
        Returns the held Redis lock, or None when Redis itself failed and the
        caller should fall back to the local lock.
        """
        lock = self.redis_client.lock(
            self._key(family_id),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.warning(f"Redis lock for family {family_id} unavailable, using in-process lock: {e}")
            return None
        if not acquired:
            logger.error(f"Timed out after {self.lock_timeout}s waiting for sync lock of family {family_id}")
            raise SyncLockTimeout(family_id, self.lock_timeout)
        logger.debug(f"Acquired sync lock for family {family_id}")
        return lock

    async def _release_redis_lock(self, lock, family_id: int) -> None:
        # The guarded work has already happened; a failed release must not undo its result
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.warning(
                f"Sync lock for family {family_id} expired before release; "
                f"the operation outlived SYNC_LOCK_TIMEOUT_SECONDS ({self.lock_timeout}s)"
            )
        except RedisError as e:
            logger.warning(f"Releasing sync lock for family {family_id} failed, it will expire on its own: {e}")

    @asynccontextmanager
    async def hold(self, family_id: int):
        lock = None
        if self.redis_client is not None:
            lock = await self._acquire_redis_lock(family_id)

        if lock is None:
            if self.redis_client is None and not self._warned_local:
                logger.warning("Sync locks are process-local; run a single worker or configure Redis")
                self._warned_local = True
            async with self._local_lock(family_id):
                yield
            return

        try:
            yield
        finally:
            await self._release_redis_lock(lock, family_id)

family_sync_locks = FamilySyncLocks()
