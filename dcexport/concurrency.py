"""
Keyed synchronization primitives shared by the caches.

- KeyedLock: one asyncio.Lock per key, created on demand and dropped
  once nobody holds or waits for it.
- SharedFetches: install-or-join table of in-flight tasks, so concurrent
  callers for the same key share one underlying fetch.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _LockEntry:
    lock: asyncio.Lock
    users: int = 0


class KeyedLock:
    """
    Mutual exclusion per key.

    Usage:
        locks = KeyedLock()
        async with locks.acquire(path):
            ...
    """

    def __init__(self):
        self._entries: Dict[Hashable, _LockEntry] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry(asyncio.Lock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries


@dataclass
class _PendingFetch:
    task: "asyncio.Task[Any]"
    waiters: int = 0


class SharedFetches:
    """
    Coalesces concurrent fetches by key.

    The first caller for a key starts the fetch; later callers attach to
    the same task. The entry is removed as soon as the task finishes,
    whatever the outcome, so a failed key can be fetched again.

    A waiter that gets cancelled only cancels the shared task when it was
    the last one waiting on it.
    """

    def __init__(self):
        self._pending: Dict[Hashable, _PendingFetch] = {}

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        entry = self._pending.get(key)
        if entry is None:
            task = asyncio.ensure_future(factory())
            entry = self._pending[key] = _PendingFetch(task)
            task.add_done_callback(lambda _, k=key, e=entry: self._discard(k, e))
        else:
            logger.debug(f"Joining in-flight fetch for {key}")

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            if entry.waiters == 1 and not entry.task.done():
                entry.task.cancel()
            raise
        finally:
            entry.waiters -= 1

    def _discard(self, key: Hashable, entry: _PendingFetch) -> None:
        if self._pending.get(key) is entry:
            del self._pending[key]

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)
