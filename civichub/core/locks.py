"""Per-key asyncio locks used to serialise work for a single sender."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """Hand out one :class:`asyncio.Lock` per key.

    ``asyncio.Lock`` wakes waiters in FIFO order, so messages from the same
    sender run in arrival order while different senders never contend. Entries
    are dropped once no coroutine holds or waits on them, which keeps the map
    bounded by the number of senders currently in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]

    def in_flight(self) -> int:
        """Number of keys currently held or awaited."""

        return len(self._locks)
