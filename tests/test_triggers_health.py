from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List
from uuid import uuid4

import pytest

from core import JobLock, JobRun, JobStatus, JobTrigger, RuntimeConfig
from orchestrator import LockManager, TriggerService, WatchdogThresholds, compute_automation_health, extract_rates
from storage import (
    InMemoryActionStore,
    InMemoryAnalysisStore,
    InMemoryAutomationStateStore,
    InMemoryConfigStore,
    InMemoryJobRunStore,
    InMemoryLockStore,
    InMemorySourceStore,
    StoreBundle,
)
from utils.exceptions import UnauthorizedError


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _bundle(**config) -> StoreBundle:
    return StoreBundle(
        analyses=InMemoryAnalysisStore(),
        job_runs=InMemoryJobRunStore(),
        locks=InMemoryLockStore(),
        sources=InMemorySourceStore(),
        actions=InMemoryActionStore(),
        automation=InMemoryAutomationStateStore(),
        config=InMemoryConfigStore(RuntimeConfig(cron_secret="topsecret", **config)),
    )


class RecordingOrchestrator:
    def __init__(self, error: Exception = None):
        self.triggers: List[JobTrigger] = []
        self.error = error
        self.lock_seen = None

    async def run_job(self, trigger: JobTrigger = JobTrigger.MANUAL) -> JobRun:
        self.triggers.append(trigger)
        if self.error is not None:
            raise self.error
        return JobRun(id=uuid4().hex, job_name="pull_demands", trigger=trigger, status=JobStatus.SUCCESS)


def test_lock_manager_ttl_and_release() -> None:
    clock = {"now": NOW}
    manager = LockManager(InMemoryLockStore(), clock=lambda: clock["now"])

    first = manager.acquire("pull_now", "a", ttl_seconds=60)
    assert first.acquired
    assert first.lock.expires_at == NOW + timedelta(seconds=60)
    assert manager.acquire("pull_now", "b", ttl_seconds=60).reason == "LOCKED"

    clock["now"] = NOW + timedelta(seconds=61)
    assert manager.acquire("pull_now", "b", ttl_seconds=0).acquired
    assert not manager.release("pull_now", "a")

    manager.force_unlock("pull_now")
    assert manager.get("pull_now").locked_by is None


@pytest.mark.asyncio
async def test_pull_now_runs_and_releases_lock() -> None:
    bundle = _bundle()
    orchestrator = RecordingOrchestrator()
    service = TriggerService(bundle, orchestrator)

    outcome = await service.pull_now()

    assert not outcome.skipped
    assert outcome.to_dict()["trigger"] == "manual"
    assert orchestrator.triggers == [JobTrigger.MANUAL]
    assert not bundle.locks.get("pull_now").is_active()
    assert bundle.automation.get()["last_trigger"] == "manual"


@pytest.mark.asyncio
async def test_pull_now_skips_when_locked() -> None:
    bundle = _bundle()
    orchestrator = RecordingOrchestrator()
    service = TriggerService(bundle, orchestrator)
    service.locks.acquire("pull_now", "someone-else", ttl_seconds=60)

    outcome = await service.pull_now()

    assert outcome.skipped
    assert outcome.to_dict()["reason"] == "LOCKED"
    assert outcome.to_dict()["lock"]["locked_by"] == "someone-else"
    assert orchestrator.triggers == []


@pytest.mark.asyncio
async def test_lock_released_when_job_raises() -> None:
    bundle = _bundle()
    service = TriggerService(bundle, RecordingOrchestrator(error=RuntimeError("boom")))

    with pytest.raises(RuntimeError):
        await service.pull_now()
    assert not bundle.locks.get("pull_now").is_active()


@pytest.mark.asyncio
async def test_cron_checks_secret_and_schedule() -> None:
    bundle = _bundle(schedule_enabled=False)
    orchestrator = RecordingOrchestrator()
    service = TriggerService(bundle, orchestrator)

    with pytest.raises(UnauthorizedError):
        await service.run_cron("wrong")
    with pytest.raises(UnauthorizedError):
        await service.run_cron(None)
    assert "last_cron_hit_at" not in bundle.automation.get()

    skipped = await service.run_cron("topsecret")
    assert skipped.to_dict() == {"skipped": True, "reason": "SCHEDULE_DISABLED"}
    assert "last_cron_hit_at" in bundle.automation.get()

    bundle.config.update({"schedule_enabled": True})
    ran = await service.run_cron("topsecret")
    assert ran.job_run.trigger == JobTrigger.CRON
    assert orchestrator.triggers == [JobTrigger.CRON]


class GatedOrchestrator:
    """run_job 在 gate 打开前一直占着锁"""

    def __init__(self, bundle: StoreBundle):
        self.bundle = bundle
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.holder = None
        self.calls = 0

    async def run_job(self, trigger: JobTrigger = JobTrigger.MANUAL) -> JobRun:
        self.calls += 1
        self.holder = self.bundle.locks.get("pull_now").locked_by
        self.started.set()
        await self.gate.wait()
        return JobRun(id=uuid4().hex, job_name="pull_demands", trigger=trigger, status=JobStatus.SUCCESS)


@pytest.mark.asyncio
async def test_concurrent_pull_now_runs_once_and_reports_holder() -> None:
    bundle = _bundle()
    orchestrator = GatedOrchestrator(bundle)
    service = TriggerService(bundle, orchestrator)

    async def _second_caller():
        await orchestrator.started.wait()
        try:
            return await service.pull_now()
        finally:
            orchestrator.gate.set()

    first, second = await asyncio.gather(service.pull_now(), _second_caller())

    assert orchestrator.calls == 1
    assert first.job_run is not None and not first.skipped
    assert second.skipped
    assert second.reason == "LOCKED"
    assert second.lock.locked_by == orchestrator.holder
    assert orchestrator.holder.startswith("manual-")
    assert not bundle.locks.get("pull_now").is_active()

def test_force_unlock_requires_secret() -> None:
    bundle = _bundle()
    service = TriggerService(bundle, RecordingOrchestrator())
    service.locks.acquire("pull_now", "stuck", ttl_seconds=600)

    with pytest.raises(UnauthorizedError):
        service.force_unlock("nope")
    service.force_unlock("topsecret")

    assert not bundle.locks.get("pull_now").is_active()
    assert "last_force_unlock_at" in bundle.automation.get()


def _run(fail_rate: float, fallback_rate: float) -> JobRun:
    return JobRun(
        id=uuid4().hex,
        job_name="pull_demands",
        trigger=JobTrigger.CRON,
        status=JobStatus.SUCCESS,
        meta={"rates": {"fail_rate": fail_rate, "fallback_rate": fallback_rate}},
    )


def _health(config: RuntimeConfig, state=None, lock=None, runs=None) -> dict:
    return compute_automation_health(config, state or {}, lock, runs or [], WatchdogThresholds(), now=NOW)


def test_health_disabled_running_and_stale() -> None:
    assert _health(RuntimeConfig(schedule_enabled=False))["health"] == "disabled"

    config = RuntimeConfig(schedule_enabled=True, schedule_interval_minutes=60)
    lock = JobLock(lock_name="pull_now", locked_by="cron-1", expires_at=NOW + timedelta(minutes=1))
    running = _health(config, lock=lock)
    assert running["health"] == "running"
    assert running["lock"]["is_locked"] is True
    assert running["lock"]["locked_by"] == "cron-1"

    old = {"last_job_started_at": (NOW - timedelta(minutes=121)).isoformat()}
    stale = _health(config, state=old)
    assert stale["health"] == "stale"
    assert stale["reasons"] == ["STALE_NO_RECENT_JOB"]
    assert _health(config)["health"] == "stale"


def test_health_rates_drive_warning_and_bad() -> None:
    config = RuntimeConfig(schedule_enabled=True, schedule_interval_minutes=60)
    state = {"last_job_started_at": (NOW - timedelta(minutes=10)).isoformat()}

    assert _health(config, state, runs=[_run(0.0, 0.0)])["health"] == "healthy"

    warning = _health(config, state, runs=[_run(0.4, 0.0), _run(0.2, 0.0)])
    assert warning["health"] == "warning"
    assert warning["reasons"] == ["FAIL_RATE_HIGH"]
    assert warning["recent"]["avg_fail_rate"] == pytest.approx(0.3)

    bad = _health(config, state, runs=[_run(0.8, 0.9)])
    assert bad["health"] == "bad"
    assert bad["reasons"] == ["FAIL_RATE_HIGH", "FALLBACK_RATE_HIGH"]

    fallback_only = _health(config, state, runs=[_run(0.0, 0.6)])
    assert fallback_only["health"] == "warning"
    assert fallback_only["reasons"] == ["FALLBACK_RATE_HIGH"]


def test_extract_rates_falls_back_to_stats() -> None:
    assert extract_rates(None) == (None, None)
    assert extract_rates({"stats": {"total": 4, "failed": 1, "fetch_fallback": 2}}) == (0.25, 0.5)
    assert extract_rates({"stats": {"total": 0}}) == (0.0, 0.0)
    assert extract_rates({"rates": {"fail_rate": 0.1, "fallback_rate": "x"}}) == (0.1, None)
