"""Automation health watchdog derived from schedule, lock and recent run rates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from core import JobLock, JobRun, RuntimeConfig


@dataclass
class WatchdogThresholds:
    lookback_runs: int = 5
    stale_multiplier: float = 2.0
    fail_rate_warn: float = 0.3
    fail_rate_bad: float = 0.6
    fallback_rate_warn: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "WatchdogThresholds":
        return cls(
            lookback_runs=max(1, settings.lookback_runs),
            stale_multiplier=settings.stale_multiplier,
            fail_rate_warn=settings.fail_rate_warn,
            fail_rate_bad=settings.fail_rate_bad,
            fallback_rate_warn=settings.fallback_rate_warn,
        )


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def extract_rates(meta: Optional[Dict[str, Any]]) -> Tuple[Optional[float], Optional[float]]:
    """(fail_rate, fallback_rate) from ``meta.rates``, else derived from ``meta.stats``."""
    if not meta:
        return None, None
    rates = meta.get("rates")
    if isinstance(rates, dict):
        fail = rates.get("fail_rate")
        fallback = rates.get("fallback_rate")
        return (
            float(fail) if isinstance(fail, (int, float)) else None,
            float(fallback) if isinstance(fallback, (int, float)) else None,
        )
    stats = meta.get("stats")
    if isinstance(stats, dict):
        total = stats.get("total") or 0
        if total <= 0:
            return 0.0, 0.0
        return (stats.get("failed") or 0) / total, (stats.get("fetch_fallback") or 0) / total
    return None, None


def compute_automation_health(
    config: RuntimeConfig,
    state: Dict[str, Any],
    lock: Optional[JobLock],
    recent_runs: List[JobRun],
    thresholds: Optional[WatchdogThresholds] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    健康状态: disabled / running / stale / bad / warning / healthy

    Args:
        config: 运行时配置
        state: 自动化状态 (last_cron_hit_at, last_job_started_at, ...)
        lock: pull_now 锁行
        recent_runs: 最近的任务运行, 新的在前
        thresholds: 告警阈值
        now: 当前时间 (测试注入)
    """
    thresholds = thresholds or WatchdogThresholds()
    now = now or datetime.now(timezone.utc)

    last_cron_hit_at = _parse_iso(state.get("last_cron_hit_at"))
    last_job_started_at = _parse_iso(state.get("last_job_started_at"))
    lock_active = bool(lock and lock.is_active(now))

    fail_sum = fallback_sum = 0.0
    counted = 0
    for run in recent_runs[: thresholds.lookback_runs]:
        fail_rate, fallback_rate = extract_rates(run.meta)
        if fail_rate is None or fallback_rate is None:
            continue
        fail_sum += fail_rate
        fallback_sum += fallback_rate
        counted += 1
    avg_fail = fail_sum / counted if counted else 0.0
    avg_fallback = fallback_sum / counted if counted else 0.0

    reasons: List[str] = []
    health = "healthy"
    if not config.schedule_enabled:
        health = "disabled"
    elif lock_active:
        health = "running"
    else:
        stale_after = timedelta(minutes=config.schedule_interval_minutes * thresholds.stale_multiplier)
        if last_job_started_at is None or now - last_job_started_at > stale_after:
            health = "stale"
            reasons.append("STALE_NO_RECENT_JOB")
        else:
            if avg_fail >= thresholds.fail_rate_bad:
                health = "bad"
                reasons.append("FAIL_RATE_HIGH")
            elif avg_fail >= thresholds.fail_rate_warn:
                health = "warning"
                reasons.append("FAIL_RATE_HIGH")
            if avg_fallback >= thresholds.fallback_rate_warn:
                if health == "healthy":
                    health = "warning"
                reasons.append("FALLBACK_RATE_HIGH")

    return {
        "schedule_enabled": config.schedule_enabled,
        "interval_minutes": config.schedule_interval_minutes,
        "last_cron_hit_at": _iso(last_cron_hit_at),
        "last_job_started_at": _iso(last_job_started_at),
        "lock": {
            "is_locked": lock_active,
            "expires_at": _iso(lock.expires_at) if lock else None,
            "locked_by": lock.locked_by if lock else None,
        },
        "health": health,
        "reasons": reasons,
        "recent": {
            "lookback_runs": thresholds.lookback_runs,
            "avg_fail_rate": avg_fail,
            "avg_fallback_rate": avg_fallback,
        },
    }
