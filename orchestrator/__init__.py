"""Job orchestration: locks, bounded pull runs, triggers and the health watchdog."""

from .health import WatchdogThresholds, compute_automation_health, extract_rates
from .lock import LockManager
from .service import JobOrchestrator, SourceReport, build_job_log, update_stats
from .triggers import TriggerOutcome, TriggerService

__all__ = [
    "JobOrchestrator",
    "LockManager",
    "SourceReport",
    "TriggerOutcome",
    "TriggerService",
    "WatchdogThresholds",
    "build_job_log",
    "compute_automation_health",
    "extract_rates",
    "update_stats",
]
