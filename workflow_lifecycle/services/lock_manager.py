import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

RELEASE_IF_OWNER = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


class LockManager(ABC):
    """Mutual exclusion keyed by workflow id"""

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    @abstractmethod
    def acquire(
        self, lock_key: str, timeout: Optional[float] = None
    ) -> AsyncContextManager[bool]:
        """Async context manager yielding True when the lock is held"""

    @abstractmethod
    async def is_locked(self, lock_key: str) -> bool:
        pass

    async def health_check(self) -> str:
        return "healthy"


class LocalLockManager(LockManager):
    """In-process locks for single-instance deployments and tests"""

    def __init__(self, lock_timeout: float = 60.0):
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def acquire(
        self, lock_key: str, timeout: Optional[float] = None
    ) -> AsyncGenerator[bool, None]:
        timeout = timeout or self.lock_timeout
        lock = self._locks.setdefault(lock_key, asyncio.Lock())
        self._waiters[lock_key] = self._waiters.get(lock_key, 0) + 1
        acquired = False

        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
                acquired = True
                logger.debug(f"Lock acquired: {lock_key}")
            except asyncio.TimeoutError:
                logger.warning(f"Timed out waiting for lock {lock_key}")

            yield acquired

        finally:
            if acquired:
                lock.release()
                logger.debug(f"Lock released: {lock_key}")

            self._waiters[lock_key] -= 1
            if self._waiters[lock_key] == 0:
                # Nobody else is waiting; drop the entry so the table stays small
                del self._waiters[lock_key]
                self._locks.pop(lock_key, None)

    async def is_locked(self, lock_key: str) -> bool:
        lock = self._locks.get(lock_key)
        return bool(lock and lock.locked())


class DistributedLockManager(LockManager):
    """Redis ``SET NX EX`` locks shared by every instance of the service

    Each holder stores a random token in the key and deletes the key only
    while it still holds that token, so an expired lock taken over by another
    instance is never released by the previous holder.
    """

    KEY_PREFIX = "workflow_lifecycle:lock:"

    def __init__(
        self,
        redis_url: str,
        lock_timeout: int = 60,
        retry_delay: float = 0.1,
        max_attempts: int = 8,
    ):
        self.redis_url = redis_url
        self.lock_timeout = lock_timeout
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self._redis: Optional[redis.Redis] = None

    def _key(self, lock_key: str) -> str:
        return f"{self.KEY_PREFIX}{lock_key}"

    async def initialize(self) -> None:
        self._redis = redis.from_url(self.redis_url)
        try:
            await self._redis.ping()
        except RedisError as e:
            logger.error(f"Redis lock backend at {self.redis_url} unreachable: {e}")
            await self.cleanup()
            raise
        logger.info("Distributed lock manager initialized")

    async def cleanup(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def _wait_for(self, key: str, token: str, expiry: int, attempts: int) -> bool:
        delay = self.retry_delay
        for attempt in range(1, attempts + 1):
            if await self._redis.set(key, token, nx=True, ex=expiry):
                logger.debug(f"Lock acquired: {key}")
                return True
            if attempt < attempts:
                logger.debug(f"Lock {key} busy, attempt {attempt}/{attempts}, retrying in {delay}s")
                await asyncio.sleep(delay)
                delay *= 2

        logger.warning(f"Gave up on lock {key} after {attempts} attempts")
        return False

    async def _release(self, key: str, token: str) -> None:
        try:
            await self._redis.eval(RELEASE_IF_OWNER, 1, key, token)
            logger.debug(f"Lock released: {key}")
        except RedisError as e:
            # The key still expires on its own
            logger.warning(f"Failed to release lock {key}: {e}")

    @asynccontextmanager
    async def acquire(
        self, lock_key: str, timeout: Optional[float] = None, max_attempts: Optional[int] = None
    ) -> AsyncGenerator[bool, None]:
        """
        Hold the lock for ``lock_key`` for the duration of the block

        Args:
            lock_key: Workflow id
            timeout: Lock expiry in seconds, defaults to ``lock_timeout``
            max_attempts: Tries before yielding False, the delay doubling after each

        Yields:
            bool: True if the lock is held
        """
        if self._redis is None:
            raise RuntimeError("Lock manager not initialized")

        key = self._key(lock_key)
        token = uuid.uuid4().hex
        acquired = await self._wait_for(
            key, token, int(timeout or self.lock_timeout), max_attempts or self.max_attempts
        )
        try:
            yield acquired
        finally:
            if acquired:
                await self._release(key, token)

    async def is_locked(self, lock_key: str) -> bool:
        if self._redis is None:
            return False
        return bool(await self._redis.exists(self._key(lock_key)))

    async def health_check(self) -> str:
        if self._redis is None:
            return "not_initialized"
        try:
            await self._redis.ping()
        except Exception as e:
            return f"unhealthy: {e}"
        return "healthy"
