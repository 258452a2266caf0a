from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
import weakref


class KeyedLocks:
    """In-process mutex per key (``"auction:<id>"``, ``"loan:<id>"``, ...).

    Serialises the read-then-write critical sections of a single worker
    process. Across processes the row locks taken with ``SELECT ... FOR
    UPDATE`` and the unique constraints on the tables do the same job.
    Locks are held weakly and disappear once no coroutine references them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._get(key)
        async with lock:
            yield


locks = KeyedLocks()
