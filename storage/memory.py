"""In-memory stores for tests and single-process deployments."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import uuid4

from core import (
    ActionType,
    AnalysisAction,
    AnalysisRecord,
    AnalysisRecordInput,
    AnalysisStatus,
    JobLock,
    JobRun,
    LockAcquireResult,
    RuntimeConfig,
    Source,
)

from .base import (
    ActionStore,
    AnalysisStore,
    AutomationStateStore,
    ConfigStore,
    JobRunStore,
    LockStore,
    SourceStore,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_cron_secret() -> str:
    return secrets.token_urlsafe(24)


class InMemoryAnalysisStore(AnalysisStore):
    """Thread-safe analysis records keyed by normalized URL."""

    def __init__(self) -> None:
        self._records: Dict[str, AnalysisRecord] = {}
        self._by_url: Dict[str, str] = {}
        self._lock = Lock()

    def upsert(self, record: AnalysisRecordInput) -> AnalysisRecord:
        with self._lock:
            now = _utcnow()
            existing_id = self._by_url.get(record.url_normalized)
            existing = self._records.get(existing_id) if existing_id else None
            stored = AnalysisRecord(
                **record.model_dump(),
                id=existing.id if existing else uuid4().hex,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._records[stored.id] = stored
            self._by_url[stored.url_normalized] = stored.id
            return stored.model_copy(deep=True)

    def list_existing(self, urls: List[str]) -> List[str]:
        with self._lock:
            return [url for url in dict.fromkeys(urls) if url in self._by_url]

    def get(self, analysis_id: str) -> Optional[AnalysisRecord]:
        with self._lock:
            record = self._records.get(analysis_id)
            return record.model_copy(deep=True) if record else None

    def get_by_normalized_url(self, url_normalized: str) -> Optional[AnalysisRecord]:
        with self._lock:
            record_id = self._by_url.get(url_normalized)
            record = self._records.get(record_id) if record_id else None
            return record.model_copy(deep=True) if record else None

    def list_recent(self, limit: int = 20, offset: int = 0) -> List[AnalysisRecord]:
        with self._lock:
            ordered = sorted(self._records.values(), key=lambda item: item.updated_at, reverse=True)
            return [item.model_copy(deep=True) for item in ordered[offset: offset + limit]]

    def list_signal_candidates(self, since: datetime, limit: int) -> List[AnalysisRecord]:
        with self._lock:
            kept = [
                item
                for item in self._records.values()
                if item.updated_at >= since and item.status == AnalysisStatus.SUCCESS and item.need_card is not None
            ]
            kept.sort(key=lambda item: item.updated_at, reverse=True)
            return [item.model_copy(deep=True) for item in kept[:limit]]


class InMemoryJobRunStore(JobRunStore):
    def __init__(self) -> None:
        self._runs: Dict[str, JobRun] = {}
        self._lock = Lock()

    def insert(self, run: JobRun) -> JobRun:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
            return run.model_copy(deep=True)

    def update(self, run: JobRun) -> JobRun:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
            return run.model_copy(deep=True)

    def get(self, run_id: str) -> Optional[JobRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    def list_recent(self, limit: int = 20, offset: int = 0, job_name: Optional[str] = None) -> List[JobRun]:
        with self._lock:
            runs = [run for run in self._runs.values() if job_name is None or run.job_name == job_name]
            runs.sort(key=lambda item: item.started_at, reverse=True)
            return [run.model_copy(deep=True) for run in runs[offset: offset + limit]]


class InMemoryLockStore(LockStore):
    """Lock rows guarded by a process-wide mutex; the check-and-set happens under it."""

    def __init__(self) -> None:
        self._locks: Dict[str, JobLock] = {}
        self._mutex = Lock()

    def try_acquire(self, lock_name: str, owner: str, expires_at: datetime, now: datetime) -> LockAcquireResult:
        with self._mutex:
            current = self._locks.get(lock_name)
            if current is not None and current.is_active(now):
                return LockAcquireResult(acquired=False, lock=current.model_copy(), reason="LOCKED")
            lock = JobLock(lock_name=lock_name, locked_by=owner, locked_at=now, expires_at=expires_at)
            self._locks[lock_name] = lock
            return LockAcquireResult(acquired=True, lock=lock.model_copy())

    def get(self, lock_name: str) -> Optional[JobLock]:
        with self._mutex:
            lock = self._locks.get(lock_name)
            return lock.model_copy() if lock else None

    def release(self, lock_name: str, owner: str) -> bool:
        with self._mutex:
            current = self._locks.get(lock_name)
            if current is None or current.locked_by != owner:
                return False
            self._locks[lock_name] = JobLock(lock_name=lock_name)
            return True

    def force_release(self, lock_name: str) -> None:
        with self._mutex:
            self._locks[lock_name] = JobLock(lock_name=lock_name)


class InMemorySourceStore(SourceStore):
    def __init__(self, sources: Optional[List[Source]] = None) -> None:
        self._sources: Dict[str, Source] = {}
        self._lock = Lock()
        for source in sources or []:
            self.add(source)

    def list_enabled(self) -> List[Source]:
        with self._lock:
            return [source.model_copy() for source in self._sources.values() if source.enabled]

    def touch_checked(self, source_id: str, checked_at: Optional[datetime] = None) -> None:
        with self._lock:
            source = self._sources.get(source_id)
            if source is not None:
                source.last_checked_at = checked_at or _utcnow()

    def get(self, source_id: str) -> Optional[Source]:
        with self._lock:
            source = self._sources.get(source_id)
            return source.model_copy() if source else None

    def add(self, source: Source) -> Source:
        with self._lock:
            self._sources[source.id] = source.model_copy()
            return source.model_copy()


class InMemoryActionStore(ActionStore):
    def __init__(self) -> None:
        self._actions: Dict[str, AnalysisAction] = {}
        self._lock = Lock()

    def upsert(self, action: AnalysisAction) -> AnalysisAction:
        with self._lock:
            stored = action.model_copy(update={"updated_at": _utcnow()})
            self._actions[stored.analysis_id] = stored
            return stored.model_copy(deep=True)

    def delete(self, analysis_id: str) -> bool:
        with self._lock:
            return self._actions.pop(analysis_id, None) is not None

    def get(self, analysis_id: str) -> Optional[AnalysisAction]:
        with self._lock:
            action = self._actions.get(analysis_id)
            return action.model_copy(deep=True) if action else None

    def list_saved(self, tag: Optional[str] = None) -> List[AnalysisAction]:
        with self._lock:
            kept = [
                action
                for action in self._actions.values()
                if action.action in (ActionType.SAVED, ActionType.WATCHING) and (not tag or tag in action.tags)
            ]
            kept.sort(key=lambda item: item.updated_at, reverse=True)
            return [action.model_copy(deep=True) for action in kept]


class InMemoryAutomationStateStore(AutomationStateStore):
    def __init__(self) -> None:
        self._values: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    def get(self, key: str = "health") -> Dict[str, Any]:
        with self._lock:
            return dict(self._values.get(key, {}))

    def update(self, patch: Dict[str, Any], key: str = "health") -> Dict[str, Any]:
        with self._lock:
            merged = {**self._values.get(key, {}), **patch}
            self._values[key] = merged
            return dict(merged)


class InMemoryConfigStore(ConfigStore):
    def __init__(self, defaults: Optional[RuntimeConfig] = None) -> None:
        self._defaults = defaults or RuntimeConfig()
        self._config: Optional[RuntimeConfig] = None
        self._lock = Lock()

    def get_or_create(self) -> RuntimeConfig:
        with self._lock:
            if self._config is None:
                secret = self._defaults.cron_secret or new_cron_secret()
                self._config = self._defaults.model_copy(update={"cron_secret": secret, "updated_at": _utcnow()})
            return self._config.model_copy()

    def update(self, patch: Dict[str, Any]) -> RuntimeConfig:
        current = self.get_or_create()
        with self._lock:
            data = current.model_dump()
            data.update({key: value for key, value in patch.items() if key in RuntimeConfig.model_fields})
            data["updated_at"] = _utcnow()
            self._config = RuntimeConfig.model_validate(data)
            return self._config.model_copy()
