"""
Per-ride write locks.

The ride service holds one of these around each load -> mutate -> save
attempt so that two handlers working on the same ride take turns instead of
racing into a version conflict.  The version check in the repository stays
the source of truth; the lock only reduces retries.

* ``LocalRideLocks``   -- ``asyncio.Lock`` per ride, single process.
* ``RedisRideLocks``   -- ``DistributedLock`` per ride, horizontally scaled.
* ``NoRideLocks``      -- optimistic concurrency only.

``DistributedLock`` uses SET NX EX for acquire and a Lua script for atomic
check-and-delete on release.  Acquisition waits at most ``wait_seconds``.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
import weakref

import redis.asyncio as aioredis

from src.domain.errors import ConflictError


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 30,
        wait_seconds: float = 0.0,
        retry_interval: float = 0.05,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_seconds = wait_seconds
        self.retry_interval = retry_interval
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_within(self) -> bool:
        """Retry ``acquire`` until it succeeds or ``wait_seconds`` elapse."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.retry_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire_within()
        if not acquired:
            raise ConflictError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class LocalRideLocks:
    def __init__(self):
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __call__(self, ride_id: int) -> asyncio.Lock:
        lock = self._locks.get(ride_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ride_id] = lock
        return lock


class RedisRideLocks:
    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = 10,
        wait_seconds: float = 5.0,
    ):
        self.redis = client
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds

    def __call__(self, ride_id: int) -> DistributedLock:
        return DistributedLock(
            self.redis,
            f"ride:{ride_id}",
            ttl_seconds=self.ttl_seconds,
            wait_seconds=self.wait_seconds,
        )


class NoRideLocks:
    def __call__(self, ride_id: int) -> contextlib.nullcontext:
        return contextlib.nullcontext()
