"""TTL lock manager guarding job runs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core import JobLock, LockAcquireResult
from storage.base import LockStore


logger = logging.getLogger(__name__)

MIN_TTL_SECONDS = 0.001


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockManager:
    """
    Named mutual-exclusion locks with absolute expiry.

    An expired lock is free for the next caller; locks are never renewed.
    Callers that fail to acquire get ``reason="LOCKED"`` and do not wait.
    """

    def __init__(self, store: LockStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self._clock = clock

    def acquire(self, lock_name: str, owner: str, ttl_seconds: float) -> LockAcquireResult:
        now = self._clock()
        ttl = max(MIN_TTL_SECONDS, float(ttl_seconds))
        result = self.store.try_acquire(lock_name, owner, now + timedelta(seconds=ttl), now)
        if result.acquired:
            logger.debug("lock %s acquired by %s", lock_name, owner)
        else:
            holder = result.lock.locked_by if result.lock else None
            logger.info("lock %s busy (held by %s)", lock_name, holder)
        return result

    def release(self, lock_name: str, owner: str) -> bool:
        released = self.store.release(lock_name, owner)
        if not released:
            logger.debug("lock %s not held by %s, nothing released", lock_name, owner)
        return released

    def force_unlock(self, lock_name: str) -> None:
        logger.warning("force unlocking %s", lock_name)
        self.store.force_release(lock_name)

    def get(self, lock_name: str) -> Optional[JobLock]:
        return self.store.get(lock_name)
