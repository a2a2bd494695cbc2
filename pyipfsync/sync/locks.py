"""Per-path serialization of publish and delete operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class PathLocks:
    """A table of asyncio locks keyed by path.

    Only one holder per path runs at a time; different paths proceed
    independently. Entries are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, path: str) -> bool:
        lock = self._locks.get(path)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._users[path] = self._users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[path] -= 1
            if self._users[path] == 0:
                del self._users[path]
                del self._locks[path]
