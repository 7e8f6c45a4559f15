# app/db/locks.py
"""
Per-user write serialization.

Every mutation for one user_id runs inside `hold(user_id)`. Writers for
different users never contend; readers never take a lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class UserLockManager:
    """
    Hands out one asyncio.Lock per user_id for the duration of a write.
    Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        self._holders[user_id] = self._holders.get(user_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if self._holders[user_id] == 0:
                del self._holders[user_id]
                self._locks.pop(user_id, None)

    @property
    def active_users(self) -> int:
        return len(self._locks)
