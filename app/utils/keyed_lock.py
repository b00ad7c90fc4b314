# app/utils/keyed_lock.py
"""
Mutual exclusion scoped to a string key.

Used for the booking write path (per business/date), for appointment status
changes and calendar sync (per appointment), and for calendar token refresh
(per business/staff). The in-memory backend only serializes threads of one
process; deployments running several API/worker processes should set
LOCK_BACKEND=redis.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from app.config.settings import get_settings
from app.core.exceptions import LockTimeout

logger = logging.getLogger(__name__)


class InMemoryKeyedLock:
    """Process-local lock registry with reference counting so idle keys are released."""

    def __init__(self, timeout: float = 15.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def acquire(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1

        acquired = lock.acquire(timeout=self.timeout if timeout is None else timeout)
        try:
            if not acquired:
                raise LockTimeout(f"Timed out waiting for lock {key}", key=key)
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self):
        with self._guard:
            return set(self._locks)


class RedisKeyedLock:
    """Lock shared by every process pointed at the same Redis."""

    def __init__(self, client, timeout: float = 15.0):
        self.client = client
        self.timeout = timeout

    @contextmanager
    def acquire(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        wait = self.timeout if timeout is None else timeout
        # The lock expires on its own if the holder dies mid-operation
        lock = self.client.lock(key, timeout=max(wait * 4, 30), blocking_timeout=wait)
        if not lock.acquire():
            raise LockTimeout(f"Timed out waiting for lock {key}", key=key)
        try:
            yield
        finally:
            try:
                lock.release()
            except Exception as e:
                logger.warning(f"Failed to release redis lock {key}: {e}")


_keyed_lock = None


def get_keyed_lock():
    """Return the process-wide keyed lock for the configured backend"""
    global _keyed_lock
    if _keyed_lock is None:
        settings = get_settings()
        if settings.LOCK_BACKEND == "redis":
            from app.config.redis import get_sync_redis

            _keyed_lock = RedisKeyedLock(get_sync_redis(), timeout=settings.LOCK_TIMEOUT_SECONDS)
        else:
            _keyed_lock = InMemoryKeyedLock(timeout=settings.LOCK_TIMEOUT_SECONDS)
    return _keyed_lock
