"""
DocMind - Keyed Async Locks
============================
Per-key ``asyncio.Lock`` registry.  Memory-tier mutations on the same
``(user, document)`` key are serialised; different keys never contend.

Locks are created lazily and released from the registry once no task
holds or waits on them, so the registry stays bounded by the number of
*active* keys.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """Hand out one ``asyncio.Lock`` per key, reference-counted."""

    __slots__ = ("_locks", "_waiters")

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}


    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


    def __len__(self) -> int:
        return len(self._locks)
