"""
auth/locks.py -- Per-key locking for the shared mutable maps.

The pipeline keeps a few process-wide maps (login attempt counters, honeypot
strikes, behavioral profiles, session mutations). Each one needs atomic
read-modify-write per key, but unrelated keys must not contend on a single
global lock.

  KeyedLock  -- asyncio locks created on demand per key and dropped once no
                coroutine holds or waits on them. Used by the async pipeline.
  StripedLock -- a fixed pool of threading locks selected by hash(key). Used
                by components with a synchronous API that may be called from
                worker threads (FastAPI runs sync handlers in a thread pool).

Layer rule: stdlib only.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """Async mutual exclusion scoped to a single key.

    Usage:
        locks = KeyedLock()
        async with locks("203.0.113.9"):
            ...
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def __call__(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
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


class StripedLock:
    """Fixed-size pool of threading locks; a key always maps to the same stripe."""

    def __init__(self, stripes: int = 64) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._stripes = [threading.Lock() for _ in range(stripes)]

    def __call__(self, key: Hashable) -> threading.Lock:
        return self._stripes[hash(key) % len(self._stripes)]
