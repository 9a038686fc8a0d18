"""Shared runtime container for web/CLI entrypoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config import Settings, get_settings
from intelligence import NeedCardExtractor, get_llm
from intelligence.llm import BaseLLM
from orchestrator import JobOrchestrator, LockManager, TriggerService, WatchdogThresholds, compute_automation_health
from pipeline.acquisition import AnalyzeOptions, ContentAcquirer
from pipeline.analyze import AnalysisPipeline
from scrapers import HackerNewsScraper, register_adapter
from sources import ContentFetcher, ReaderProxyClient
from storage import StoreBundle, build_stores


logger = logging.getLogger(__name__)


@dataclass
class RadarRuntime:
    """All long-lived collaborators, wired once and shared by the API and CLI."""

    settings: Settings
    stores: StoreBundle
    fetcher: ContentFetcher
    reader: ReaderProxyClient
    scraper: HackerNewsScraper
    pipeline: AnalysisPipeline
    orchestrator: JobOrchestrator
    triggers: TriggerService

    def analyze_options(self) -> AnalyzeOptions:
        return AnalyzeOptions.from_settings(self.settings, self.stores.config.get_or_create())

    def automation_health(self) -> Dict[str, Any]:
        return compute_automation_health(
            config=self.stores.config.get_or_create(),
            state=self.stores.automation.get(),
            lock=self.triggers.locks.get(self.triggers.lock_name),
            recent_runs=self.stores.job_runs.list_recent(limit=self.settings.watchdog.lookback_runs),
            thresholds=WatchdogThresholds.from_settings(self.settings.watchdog),
        )

    async def aclose(self) -> None:
        await self.fetcher.aclose()
        await self.scraper.close()
        llm = self.pipeline.extractor.llm if self.pipeline.extractor else None
        if llm is not None:
            await llm.aclose()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    stores: Optional[StoreBundle] = None,
    fetcher: Optional[ContentFetcher] = None,
    scraper: Optional[HackerNewsScraper] = None,
    llm: Optional[BaseLLM] = None,
) -> RadarRuntime:
    """
    组装运行时

    Args:
        settings: 全局配置
        stores: 存储 (不传则按 STORAGE_BACKEND 创建)
        fetcher: 抓取器 (测试时可注入基于 MockTransport 的实例)
        scraper: 讨论源适配器
        llm: LLM 实例 (不传则按 LLM_PROVIDER 创建)
    """
    settings = settings or get_settings()
    stores = stores or build_stores(settings)

    fetcher = fetcher or ContentFetcher(
        headers={
            "user-agent": settings.fetch.user_agent,
            "accept-language": settings.fetch.accept_language,
        }
    )
    reader = ReaderProxyClient(
        fetcher,
        base_url=settings.fetch.reader_base_url,
        api_key=settings.fetch.reader_api_key,
    )
    scraper = scraper or HackerNewsScraper(
        firebase_url=settings.hackernews.firebase_url,
        algolia_url=settings.hackernews.algolia_url,
        requests_per_second=settings.hackernews.requests_per_second,
        discovery_timeout=settings.hackernews.discovery_timeout,
        discovery_item_timeout=settings.hackernews.discovery_item_timeout,
    )
    register_adapter(scraper.source_type, scraper)

    llm = llm or get_llm(settings=settings.llm)
    extractor = NeedCardExtractor(llm, timeout=settings.llm.timeout)

    options = AnalyzeOptions.from_settings(settings)
    pipeline = AnalysisPipeline(ContentAcquirer(fetcher, reader, scraper), extractor, options=options)
    orchestrator = JobOrchestrator(
        stores,
        pipeline,
        options=options,
        item_timebox=settings.job.item_timebox_seconds,
        discovery_timeout=settings.job.discovery_timeout_seconds,
        job_name=settings.job.job_name,
    )
    triggers = TriggerService(
        stores,
        orchestrator,
        LockManager(stores.locks),
        lock_name=settings.job.lock_name,
        lock_ttl_seconds=settings.job.lock_ttl_seconds,
    )
    logger.info("runtime ready (storage=%s, llm=%s/%s)", settings.storage.backend, llm.provider, llm.model)
    return RadarRuntime(
        settings=settings,
        stores=stores,
        fetcher=fetcher,
        reader=reader,
        scraper=scraper,
        pipeline=pipeline,
        orchestrator=orchestrator,
        triggers=triggers,
    )


_RUNTIME: Optional[RadarRuntime] = None


def get_runtime() -> RadarRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


def set_runtime(runtime: Optional[RadarRuntime]) -> None:
    """替换进程级运行时 (测试用)"""
    global _RUNTIME
    _RUNTIME = runtime
