"""Job orchestrator: discovery, dedup, bounded time-boxed analysis and run bookkeeping."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from core import (
    AnalysisRecordInput,
    AnalysisStatus,
    FailReason,
    JobRun,
    JobRunStats,
    JobStatus,
    JobTrigger,
    RuntimeConfig,
    Source,
)
from pipeline.acquisition import AnalyzeOptions
from pipeline.analyze import AnalysisPipeline
from pipeline.records import failed_record_input, record_input_from_result
from pipeline.url_normalize import normalize_url
from scrapers import get_adapter
from scrapers.base import BaseSourceAdapter
from storage import StoreBundle
from utils.exceptions import AbortError, InvalidUrlError
from utils.timeout import CancellationToken, with_timeout


logger = logging.getLogger(__name__)

DEFAULT_JOB_NAME = "pull_demands"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SourceReport:
    """Per-source counters rendered into the job log."""

    source: Source
    discovered: int = 0
    deduped_new: int = 0
    deduped_existing: int = 0
    analyzed: int = 0
    failed: int = 0
    analyzed_urls: List[str] = field(default_factory=list)

    def log_line(self) -> str:
        return " ".join(
            [
                f"source={self.source.name}({self.source.id})",
                f"discovered={self.discovered}",
                f"deduped_new={self.deduped_new}",
                f"deduped_existing={self.deduped_existing}",
                f"analyzed={self.analyzed}",
                f"failed={self.failed}",
                f"analyzed_urls={','.join(self.analyzed_urls)}",
            ]
        )


def update_stats(stats: JobRunStats, record: AnalysisRecordInput) -> None:
    """Fold one persisted item into the run counters."""
    stats.total += 1
    if record.status == AnalysisStatus.SUCCESS:
        stats.success += 1
    else:
        stats.failed += 1

    warning_types = {warning.type for warning in record.warnings}
    fetch_meta = record.meta.get("fetch") or {}
    if "HN_FALLBACK" in warning_types:
        stats.discussion_fallback += 1
    if "FETCH_FALLBACK" in warning_types or fetch_meta.get("fallback") is True:
        stats.fetch_fallback += 1
    if "JINA_INVALID_CONTENT" in warning_types or record.fail_reason == FailReason.JINA_INVALID_CONTENT:
        stats.reader_invalid += 1
    if record.fail_reason == FailReason.ITEM_TIMEBOX_EXCEEDED:
        stats.timebox_exceeded += 1


def build_job_log(lines: List[str], errors: List[Dict[str, Any]], total_new: int) -> Optional[str]:
    out = list(lines)
    if total_new == 0:
        out.append("NO_NEW_URLS")
    if errors:
        out.append(f"errors={json.dumps(errors, ensure_ascii=False)}")
    return "\n".join(out) if out else None


def run_meta(stats: JobRunStats) -> Dict[str, Any]:
    return {"stats": stats.model_dump(), "rates": stats.rates()}


class JobOrchestrator:
    """
    One bounded pull run over every enabled source.

    Sources and items are processed sequentially. A run analyses at most
    ``max_per_run`` new URLs in total, each under its own time box, and is
    finalized exactly once.
    """

    def __init__(
        self,
        stores: StoreBundle,
        pipeline: AnalysisPipeline,
        *,
        options: Optional[AnalyzeOptions] = None,
        item_timebox: float = 35.0,
        discovery_timeout: float = 60.0,
        adapter_lookup: Callable[[str], BaseSourceAdapter] = get_adapter,
        job_name: str = DEFAULT_JOB_NAME,
    ) -> None:
        self.stores = stores
        self.pipeline = pipeline
        self.options = options or pipeline.options
        self.item_timebox = item_timebox
        self.discovery_timeout = discovery_timeout
        self.adapter_lookup = adapter_lookup
        self.job_name = job_name

    def _options_for(self, config: RuntimeConfig) -> AnalyzeOptions:
        return replace(
            self.options,
            max_content_chars=config.max_content_chars,
            include_comments=config.include_comments,
            comment_max_items=config.comment_max_items,
        )

    async def run_job(self, trigger: JobTrigger = JobTrigger.MANUAL) -> JobRun:
        config = self.stores.config.get_or_create()
        options = self._options_for(config)
        max_per_run = config.effective_max_per_run

        sources = self.stores.sources.list_enabled()
        if not sources:
            now = _utcnow()
            run = JobRun(
                id=uuid4().hex,
                job_name=self.job_name,
                trigger=trigger,
                status=JobStatus.FAILED,
                started_at=now,
                finished_at=now,
                error=FailReason.NO_SOURCES_ENABLED.value,
            )
            logger.warning("job %s skipped: no sources enabled", self.job_name)
            return self.stores.job_runs.insert(run)

        run = self.stores.job_runs.insert(
            JobRun(id=uuid4().hex, job_name=self.job_name, trigger=trigger, status=JobStatus.RUNNING)
        )
        logger.info("job %s started run=%s trigger=%s sources=%d", self.job_name, run.id, trigger.value, len(sources))

        stats = JobRunStats()
        lines: List[str] = []
        errors: List[Dict[str, Any]] = []
        state = {"analyzed": 0, "new": 0}

        try:
            for source in sources:
                report = SourceReport(source=source)
                try:
                    await self._process_source(source, report, options, max_per_run, stats, errors, state)
                finally:
                    self.stores.sources.touch_checked(source.id)
                lines.append(report.log_line())
                logger.info(report.log_line())
        except Exception as exc:
            logger.exception("job %s run=%s failed", self.job_name, run.id)
            return self._finalize(run, JobStatus.FAILED, build_job_log(lines, errors, state["new"]), str(exc), stats)

        return self._finalize(run, JobStatus.SUCCESS, build_job_log(lines, errors, state["new"]), None, stats)

    def _finalize(
        self,
        run: JobRun,
        status: JobStatus,
        log: Optional[str],
        error: Optional[str],
        stats: JobRunStats,
    ) -> JobRun:
        finished = run.model_copy(
            update={
                "status": status,
                "finished_at": _utcnow(),
                "log": log,
                "error": error,
                "meta": run_meta(stats),
            }
        )
        logger.info(
            "job %s run=%s finished status=%s total=%d failed=%d",
            self.job_name,
            run.id,
            status.value,
            stats.total,
            stats.failed,
        )
        return self.stores.job_runs.update(finished)

    @staticmethod
    def _error_entry(stage: str, source: Source, exc: BaseException, url: Optional[str] = None) -> Dict[str, Any]:
        entry = {
            "stage": stage,
            "source_id": source.id,
            "source_name": source.name,
            "type": "ABORTED" if isinstance(exc, AbortError) else "ERROR",
            "message": str(exc),
        }
        if url:
            entry["url"] = url
        return entry

    async def _discover(self, source: Source) -> Dict[str, str]:
        """Normalized URL -> first original URL, in discovery order."""
        adapter = self.adapter_lookup(source.type)

        async def _run(token: CancellationToken):
            return await adapter.discover(source, token=token)

        discovered = await with_timeout(_run, self.discovery_timeout)
        candidates: Dict[str, str] = {}
        for item in discovered:
            try:
                normalized = normalize_url(item.url)
            except InvalidUrlError:
                continue
            candidates.setdefault(normalized, item.url)
        return candidates

    async def _process_source(
        self,
        source: Source,
        report: SourceReport,
        options: AnalyzeOptions,
        max_per_run: int,
        stats: JobRunStats,
        errors: List[Dict[str, Any]],
        state: Dict[str, int],
    ) -> None:
        try:
            candidates = await self._discover(source)
        except Exception as exc:
            logger.warning("discovery failed for source %s: %s", source.id, exc)
            report.failed += 1
            errors.append(self._error_entry("discover", source, exc))
            return
        report.discovered = len(candidates)

        normalized = list(candidates)
        try:
            existing = set(self.stores.analyses.list_existing(normalized)) if normalized else set()
        except Exception as exc:
            logger.warning("dedup query failed for source %s: %s", source.id, exc)
            report.failed += 1
            errors.append(self._error_entry("dedupe", source, exc))
            return

        fresh = [url for url in normalized if url not in existing]
        report.deduped_existing = len(normalized) - len(fresh)
        report.deduped_new = len(fresh)
        state["new"] += len(fresh)

        budget = max(0, max_per_run - state["analyzed"])
        if source.analyze_top_n is not None:
            budget = min(budget, max(0, source.analyze_top_n))

        for url_normalized in fresh[:budget]:
            if state["analyzed"] >= max_per_run:
                break
            original = candidates.get(url_normalized, url_normalized)
            await self._analyze_item(source, original, url_normalized, options, report, stats, errors)
            state["analyzed"] += 1

    async def _analyze_item(
        self,
        source: Source,
        original: str,
        url_normalized: str,
        options: AnalyzeOptions,
        report: SourceReport,
        stats: JobRunStats,
        errors: List[Dict[str, Any]],
    ) -> None:
        async def _run(token: CancellationToken):
            return await self.pipeline.analyze(original, options=options, token=token)

        try:
            result = await with_timeout(_run, self.item_timebox)
            record = record_input_from_result(result, source_id=source.id, max_content_chars=options.max_content_chars)
            self.stores.analyses.upsert(record)
        except Exception as exc:
            fail_reason = FailReason.ITEM_TIMEBOX_EXCEEDED if isinstance(exc, AbortError) else FailReason.ANALYSIS_FAILED
            logger.warning("item %s failed (%s): %s", original, fail_reason.value, exc)
            record = failed_record_input(original, url_normalized, fail_reason, exc, source_id=source.id)
            update_stats(stats, record)
            report.failed += 1
            errors.append(self._error_entry("analyze", source, exc, url=original))
            try:
                self.stores.analyses.upsert(record)
            except Exception as store_exc:
                # 写入失败只记录日志
                logger.warning("could not persist failure for %s: %s", original, store_exc)
            return

        update_stats(stats, record)
        report.analyzed += 1
        if record.status == AnalysisStatus.FAILED:
            report.failed += 1
        report.analyzed_urls.append(record.url_normalized)
