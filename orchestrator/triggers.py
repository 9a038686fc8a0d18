"""Manual, cron and force-unlock entry points around the job orchestrator."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from core import JobLock, JobRun, JobTrigger
from storage import StoreBundle
from utils.exceptions import UnauthorizedError

from .lock import LockManager
from .service import JobOrchestrator


logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "pull_now"
DEFAULT_LOCK_TTL_SECONDS = 180.0


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TriggerOutcome:
    """Either a finished job run or a skip with its reason."""

    job_run: Optional[JobRun] = None
    skipped: bool = False
    reason: Optional[str] = None
    lock: Optional[JobLock] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.job_run is not None:
            return self.job_run.model_dump(mode="json")
        payload: Dict[str, Any] = {"skipped": self.skipped, "reason": self.reason}
        if self.lock is not None:
            payload["lock"] = self.lock.model_dump(mode="json")
        return payload


class TriggerService:
    """
    Starts job runs under the shared lock.

    Concurrent callers never wait: a held lock turns into a ``LOCKED`` skip.
    The lock is released in ``finally`` whether the run succeeds or raises.
    """

    def __init__(
        self,
        stores: StoreBundle,
        orchestrator: JobOrchestrator,
        locks: Optional[LockManager] = None,
        *,
        lock_name: str = DEFAULT_LOCK_NAME,
        lock_ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        self.stores = stores
        self.orchestrator = orchestrator
        self.locks = locks or LockManager(stores.locks)
        self.lock_name = lock_name
        self.lock_ttl_seconds = lock_ttl_seconds

    def check_secret(self, provided: Optional[str]) -> None:
        expected = self.stores.config.get_or_create().cron_secret
        if not provided or not expected or not secrets.compare_digest(provided, expected):
            raise UnauthorizedError("Unauthorized")

    async def _run_locked(self, trigger: JobTrigger, started_at: str) -> TriggerOutcome:
        owner = f"{trigger.value}-{uuid4()}"
        acquired = self.locks.acquire(self.lock_name, owner, self.lock_ttl_seconds)
        if not acquired.acquired:
            return TriggerOutcome(skipped=True, reason=acquired.reason or "LOCKED", lock=acquired.lock)

        try:
            self.stores.automation.update({"last_job_started_at": started_at, "last_trigger": trigger.value})
            job_run = await self.orchestrator.run_job(trigger)
            return TriggerOutcome(job_run=job_run)
        finally:
            self.locks.release(self.lock_name, owner)

    async def pull_now(self) -> TriggerOutcome:
        return await self._run_locked(JobTrigger.MANUAL, _utc_iso())

    async def run_cron(self, secret: Optional[str]) -> TriggerOutcome:
        self.check_secret(secret)
        now = _utc_iso()
        self.stores.automation.update({"last_cron_hit_at": now})
        if not self.stores.config.get_or_create().schedule_enabled:
            logger.info("cron hit ignored: schedule disabled")
            return TriggerOutcome(skipped=True, reason="SCHEDULE_DISABLED")
        return await self._run_locked(JobTrigger.CRON, now)

    def force_unlock(self, secret: Optional[str]) -> None:
        self.check_secret(secret)
        self.locks.force_unlock(self.lock_name)
        self.stores.automation.update({"last_force_unlock_at": _utc_iso()})
