"""
Per-Buyer Serialization
=======================

Logical locks keyed by buyer id (or hold id). All state transitions for one
buyer run inside ``async with locks.hold(key)``.

Version: 0.1.0
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from redis.asyncio import Redis

from shared.database import redis_lock
from shared.errors import ConflictError
from shared.logging import get_logger

logger = get_logger(__name__)


class LockManager(ABC):
    """Keyed mutual exclusion."""

    @abstractmethod
    def hold(self, key: str) -> AbstractAsyncContextManager[None]:
        """Async context manager holding the lock for ``key``."""
        ...


class LocalLockManager(LockManager):
    """
    asyncio locks for a single process.

    Locks are reference counted and dropped once no coroutine holds or
    awaits them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class RedisLockManager(LockManager):
    """Distributed locks over Redis ``SET NX EX``."""

    def __init__(
        self,
        client: Redis | None = None,  # type: ignore[type-arg]
        timeout_seconds: int = 30,
        wait_seconds: float = 10.0,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.wait_seconds = wait_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with redis_lock(
            f"settlement:{key}",
            client=self.client,
            timeout_seconds=self.timeout_seconds,
            wait_seconds=self.wait_seconds,
        ) as acquired:
            if not acquired:
                logger.warning("lock_not_acquired", key=key)
                raise ConflictError("another operation is in progress, retry shortly")
            yield
