# /app/utils/session_lock.py

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional
import redis.asyncio as redis

from app.config.settings import settings

# Serializes walks of the same session. With Redis configured the lock is
# shared by every worker process; without it, locks only cover this process.

logger = logging.getLogger(__name__)


class SessionLockManager:
    def __init__(self, redis_url: Optional[str], timeout: int = 30):
        self.timeout = timeout
        self.redis = None
        self._local_locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; a lock is dropped when this reaches zero
        self._local_users: Dict[str, int] = {}
        if redis_url:
            try:
                self.redis_pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
                self.redis = redis.Redis(connection_pool=self.redis_pool)
            except Exception as e:
                logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
                self.redis = None

    @asynccontextmanager
    async def _hold_local(self, session_id: str):
        lock = self._local_locks.setdefault(session_id, asyncio.Lock())
        self._local_users[session_id] = self._local_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._local_users[session_id] -= 1
            if not self._local_users[session_id]:
                del self._local_users[session_id]
                del self._local_locks[session_id]

    @asynccontextmanager
    async def hold(self, session_id: str):
        """Hold the lock of one session for the duration of the block."""
        if self.redis is None:
            async with self._hold_local(session_id):
                yield
            return

        lock = self.redis.lock(
            f"bot_session_lock:{session_id}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        async with lock:
            yield

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()


# Globally accessible instance
session_locks = SessionLockManager(settings.redis_url, timeout=settings.session_lock_timeout)
