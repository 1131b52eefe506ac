"""Per-showtime locks serializing every seat mutation."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Protocol

import redis.asyncio as redis

from cinebook.config import get_settings
from cinebook.errors import InventoryBusy

settings = get_settings()


class DistributedLockError(Exception):
    """Exception raised when lock acquisition fails."""

    pass


class DistributedLock:
    """
    Redis-based distributed lock implementation.

    Uses SET NX EX pattern for atomic lock acquisition with expiration.
    Release goes through a Lua script so only the owner (matching token)
    can delete the key.
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key: str,
        timeout_seconds: int | None = None,
        retry_delay_ms: int | None = None,
        max_retries: int | None = None,
    ):
        """
        Initialize distributed lock.

        Args:
            redis_client: Redis client instance
            key: Lock key name
            timeout_seconds: Lock expiration time in seconds
            retry_delay_ms: Delay between retry attempts in milliseconds
            max_retries: Maximum number of retry attempts
        """
        self.redis = redis_client
        self.key = f"lock:{key}"
        self.timeout_seconds = timeout_seconds or settings.LOCK_TIMEOUT_SECONDS
        self.retry_delay_ms = retry_delay_ms or settings.LOCK_RETRY_DELAY_MS
        self.max_retries = (
            max_retries if max_retries is not None else settings.LOCK_MAX_RETRIES
        )
        self.token: str | None = None
        self._release_script = self.redis.register_script(self.RELEASE_SCRIPT)

    async def acquire(self, blocking: bool = True) -> bool:
        """
        Acquire the lock.

        Args:
            blocking: If True, retry until lock is acquired or max retries reached.
                     If False, try once and return immediately.

        Returns:
            True if lock was acquired, False otherwise.
        """
        self.token = str(uuid.uuid4())
        retries = 0

        while True:
            acquired = await self.redis.set(
                self.key,
                self.token,
                nx=True,
                ex=self.timeout_seconds,
            )

            if acquired:
                return True

            if not blocking or retries >= self.max_retries:
                self.token = None
                return False

            retries += 1
            await asyncio.sleep(self.retry_delay_ms / 1000)

    async def release(self) -> bool:
        """
        Release the lock.

        Returns:
            True if lock was released, False if we didn't own the lock.
        """
        if self.token is None:
            return False

        result = await self._release_script(keys=[self.key], args=[self.token])
        self.token = None
        return bool(result)


@asynccontextmanager
async def distributed_lock(
    redis_client: redis.Redis,
    key: str,
    timeout_seconds: int | None = None,
    blocking: bool = True,
    max_retries: int | None = None,
) -> AsyncGenerator[DistributedLock, None]:
    """
    Context manager for distributed lock.

    Usage:
        async with distributed_lock(redis, "showtime:S1") as lock:
            # Critical section
            ...

    Raises:
        DistributedLockError: If lock cannot be acquired
    """
    lock = DistributedLock(
        redis_client, key, timeout_seconds, max_retries=max_retries
    )
    acquired = await lock.acquire(blocking=blocking)

    if not acquired:
        raise DistributedLockError(f"Failed to acquire lock for key: {key}")

    try:
        yield lock
    finally:
        await lock.release()


class LockRegistry(Protocol):
    """Hands out the lock guarding one showtime's seat table."""

    def showtime_lock(self, showtime_id: str): ...


class LocalLockRegistry:
    """
    In-process showtime locks.

    Sufficient when a single worker process owns the inventory; every
    coroutine touching the same showtime queues on the same asyncio.Lock.
    A showtime's lock is dropped once nobody holds or awaits it.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def showtime_lock(self, showtime_id: str) -> AsyncGenerator[None, None]:
        lock = self._locks.get(showtime_id)
        if lock is None:
            lock = self._locks[showtime_id] = asyncio.Lock()
        self._users[showtime_id] = self._users.get(showtime_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._users[showtime_id] -= 1
            if not self._users[showtime_id]:
                del self._users[showtime_id]
                del self._locks[showtime_id]


class RedisLockRegistry:
    """Showtime locks shared by every worker through Redis."""

    def __init__(
        self,
        redis_client: redis.Redis,
        timeout_seconds: int | None = None,
        max_retries: int | None = None,
    ):
        self.redis = redis_client
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    @asynccontextmanager
    async def showtime_lock(self, showtime_id: str) -> AsyncGenerator[None, None]:
        try:
            async with distributed_lock(
                self.redis,
                f"showtime:{showtime_id}",
                timeout_seconds=self.timeout_seconds,
                max_retries=self.max_retries,
            ):
                yield
        except DistributedLockError:
            raise InventoryBusy(
                f"Showtime {showtime_id} is busy. Please try again."
            )
