"""
Locks.

``TripLocks``
    In-process, per-trip ``asyncio.Lock`` registry.  Every transition for a
    trip id runs under its lock so transitions for the same trip are
    strictly serialised while different trips proceed independently.
    Entries are dropped as soon as no coroutine holds or waits on them.

``DistributedLock``
    Redis lock used by the sweeper so only one instance archives terminal
    trips at a time.  SET NX EX to acquire, Lua check-and-delete to release.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

import redis.asyncio as aioredis


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class TripLocks:
    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, trip_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(trip_id)
        if entry is None:
            entry = self._entries[trip_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(trip_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

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
