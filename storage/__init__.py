"""
Storage Module
存储模块 - 分析结果 / 任务运行 / 锁 / 数据源 / 处理标记 / 运行时配置
"""
from dataclasses import dataclass
from typing import Optional
import logging

from config import Settings, get_settings
from core import RuntimeConfig, Source
from utils.exceptions import ConfigurationError

from .base import (
    ActionStore,
    AnalysisStore,
    AutomationStateStore,
    ConfigStore,
    JobRunStore,
    LockStore,
    SourceStore,
)
from .memory import (
    InMemoryActionStore,
    InMemoryAnalysisStore,
    InMemoryAutomationStateStore,
    InMemoryConfigStore,
    InMemoryJobRunStore,
    InMemoryLockStore,
    InMemorySourceStore,
    new_cron_secret,
)
from .sqlite_store import (
    SQLiteActionStore,
    SQLiteAnalysisStore,
    SQLiteAutomationStateStore,
    SQLiteConfigStore,
    SQLiteDatabase,
    SQLiteJobRunStore,
    SQLiteLockStore,
    SQLiteSourceStore,
)
from .signals import get_latest_analysis, get_top_signals


logger = logging.getLogger(__name__)

DEFAULT_SOURCE_ID = "hn-ask"


@dataclass
class StoreBundle:
    """一组同后端的存储实例"""

    analyses: AnalysisStore
    job_runs: JobRunStore
    locks: LockStore
    sources: SourceStore
    actions: ActionStore
    automation: AutomationStateStore
    config: ConfigStore


def runtime_defaults(settings: Settings) -> RuntimeConfig:
    """静态配置 -> 运行时配置初始值"""
    return RuntimeConfig(
        schedule_enabled=settings.job.schedule_enabled,
        schedule_interval_minutes=settings.job.schedule_interval_minutes,
        max_content_chars=settings.pipeline.max_content_chars,
        max_per_run=settings.job.max_per_run,
        include_comments=settings.pipeline.include_comments,
        comment_max_items=settings.pipeline.comment_max_items,
        cron_secret=settings.job.cron_secret or "",
    )


def default_source(settings: Settings) -> Source:
    return Source(
        id=DEFAULT_SOURCE_ID,
        name="Ask HN",
        type="hacker_news",
        entry_url=f"{settings.hackernews.firebase_url.rstrip('/')}/askstories.json",
    )


def build_stores(settings: Optional[Settings] = None) -> StoreBundle:
    """
    按配置创建存储

    Args:
        settings: 全局配置 (不传则读取 get_settings())

    Returns:
        StoreBundle
    """
    settings = settings or get_settings()
    backend = settings.storage.backend.strip().lower()
    defaults = runtime_defaults(settings)

    if backend == "memory":
        bundle = StoreBundle(
            analyses=InMemoryAnalysisStore(),
            job_runs=InMemoryJobRunStore(),
            locks=InMemoryLockStore(),
            sources=InMemorySourceStore(),
            actions=InMemoryActionStore(),
            automation=InMemoryAutomationStateStore(),
            config=InMemoryConfigStore(defaults),
        )
    elif backend == "sqlite":
        db = SQLiteDatabase(settings.storage.sqlite_path)
        bundle = StoreBundle(
            analyses=SQLiteAnalysisStore(db),
            job_runs=SQLiteJobRunStore(db),
            locks=SQLiteLockStore(db),
            sources=SQLiteSourceStore(db),
            actions=SQLiteActionStore(db),
            automation=SQLiteAutomationStateStore(db),
            config=SQLiteConfigStore(db, defaults),
        )
    else:
        raise ConfigurationError(f"Unknown storage backend: {backend}")

    if settings.storage.seed_hn_source and not bundle.sources.list_enabled():
        bundle.sources.add(default_source(settings))
        logger.info("seeded default source %s", DEFAULT_SOURCE_ID)

    logger.info("storage backend: %s", backend)
    return bundle


__all__ = [
    "ActionStore",
    "AnalysisStore",
    "AutomationStateStore",
    "ConfigStore",
    "JobRunStore",
    "LockStore",
    "SourceStore",
    "InMemoryActionStore",
    "InMemoryAnalysisStore",
    "InMemoryAutomationStateStore",
    "InMemoryConfigStore",
    "InMemoryJobRunStore",
    "InMemoryLockStore",
    "InMemorySourceStore",
    "SQLiteActionStore",
    "SQLiteAnalysisStore",
    "SQLiteAutomationStateStore",
    "SQLiteConfigStore",
    "SQLiteDatabase",
    "SQLiteJobRunStore",
    "SQLiteLockStore",
    "SQLiteSourceStore",
    "StoreBundle",
    "build_stores",
    "default_source",
    "get_latest_analysis",
    "get_top_signals",
    "new_cron_secret",
    "runtime_defaults",
]
