"""
Keyed asyncio locks.

A migration (wipe + reimport) and ordinary savings writes for the same user
must not interleave, and two recomputes of one saving must not race each
other's read-modify-write. Both are expressed as locks keyed by user id or
by (user id, saving id).

Lock order is always user, then saving.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand.

    Locks are reference counted and dropped once nobody holds or waits on
    them, so the table does not grow with every user ever seen.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class LockManager:
    """The two lock families shared by the importer and the savings ledger."""

    def __init__(self):
        self.users = KeyedLock()
        self.savings = KeyedLock()

    def for_user(self, user_id: str):
        """Serializes a migration against other writes for the user."""
        return self.users.acquire(user_id)

    def for_saving(self, user_id: str, savings_id: str):
        """Serializes recomputation of one saving's balance."""
        return self.savings.acquire((user_id, savings_id))
