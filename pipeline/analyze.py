"""
Analysis Pipeline
单个 URL 的端到端分析: 规范化 -> 内容获取 -> Need Card 提取 -> 证据校验 -> 低置信度守卫
"""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, List, Optional

from core import (
    AnalysisMeta,
    AnalysisRecord,
    AnalysisResult,
    EvidenceMeta,
    FailReason,
    PipelineStep,
    WarningEntry,
)
from intelligence.need_card_extractor import NeedCardExtractor
from utils.exceptions import InvalidUrlError
from utils.timeout import CancellationToken

from .acquisition import AcquiredContent, AnalyzeOptions, ContentAcquirer
from .confidence import add_llm_failed_warning, apply_low_confidence_guard, downgrade_card
from .diagnostics import add_warning, message_meta
from .evidence import ensure_evidence_quote, pick_evidence_quote_candidate, resolve_evidence_match
from .heuristics import build_fallback_need_card
from .records import record_input_from_result
from .url_normalize import normalize_url

if TYPE_CHECKING:
    from storage.base import AnalysisStore


logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class AnalysisPipeline:
    """
    分析流水线

    除取消 (CancellationToken / AbortError) 外, 所有失败都以结构化结果返回,
    不向调用方抛出异常。
    """

    def __init__(
        self,
        acquirer: ContentAcquirer,
        extractor: Optional[NeedCardExtractor] = None,
        options: Optional[AnalyzeOptions] = None,
    ) -> None:
        self.acquirer = acquirer
        self.extractor = extractor
        self.options = options or AnalyzeOptions()

    def _fail(
        self,
        result: AnalysisResult,
        fail_reason: FailReason,
        error: str,
        started: float,
        exc: Optional[BaseException] = None,
        error_name: Optional[str] = None,
    ) -> AnalysisResult:
        result.fail_reason = fail_reason
        result.error = error
        result.need_card = None
        result.meta.error = message_meta(error, code=fail_reason.value, exc=exc, name=error_name)
        result.meta.timing.total_ms = _elapsed_ms(started)
        return result

    @staticmethod
    def _apply_content(result: AnalysisResult, content: AcquiredContent) -> None:
        result.step = content.step
        result.extractor_used = content.extractor_used
        result.title = content.title
        result.source_text = content.text or ""
        result.extracted_len = content.extracted_len
        result.meta.timing.discussion_ms = content.discussion_ms
        result.meta.timing.fetch_ms = content.fetch_ms

    async def analyze(
        self,
        url: str,
        options: Optional[AnalyzeOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> AnalysisResult:
        """
        分析单个 URL

        Args:
            url: 原始 URL
            options: 覆盖默认参数
            token: 外层时间盒的取消令牌

        Returns:
            AnalysisResult; need_card 为空时 fail_reason 必有值
        """
        options = options or self.options
        started = time.monotonic()
        warnings: List[WarningEntry] = []
        meta = AnalysisMeta()

        try:
            url_normalized = normalize_url(url)
        except InvalidUrlError as exc:
            result = AnalysisResult(url=url, url_normalized=url, warnings=warnings, meta=meta)
            return self._fail(result, FailReason.FETCH_FAILED, exc.message, started, exc=exc)

        result = AnalysisResult(url=url, url_normalized=url_normalized, warnings=warnings, meta=meta)

        content = await self.acquirer.acquire(url_normalized, options, warnings, meta, token)
        self._apply_content(result, content)
        if not content.ok:
            reason = content.fail_reason or FailReason.TOO_SHORT
            return self._fail(result, reason, content.error or reason.value, started, error_name=content.error_name)

        source_text = content.text
        source_url = meta.discussion.target_url if meta.discussion and meta.discussion.target_url else content.target_url

        card = None
        if self.extractor is not None:
            card = await self.extractor.generate(
                source_text,
                source_url,
                content.title,
                warnings,
                meta,
                token=token,
                timeout=options.llm_timeout,
            )
            if meta.llm is not None:
                meta.timing.llm_ms = meta.llm.elapsed_ms
        llm_failed = card is None
        if card is None:
            card = build_fallback_need_card(source_text, source_url, content.title)

        if card is None:
            result.low_confidence = True
            return self._fail(result, FailReason.QUOTE_NOT_FOUND, FailReason.QUOTE_NOT_FOUND.value, started)

        if card.source_url != source_url:
            add_warning(warnings, "SOURCE_URL_MISMATCH", expected=source_url, actual=card.source_url)
            card = card.model_copy(update={"source_url": source_url})

        if llm_failed:
            add_llm_failed_warning(warnings)

        match = resolve_evidence_match(source_text, card.evidence_quote)
        if match == "fail":
            fallback_quote = ensure_evidence_quote(source_text, pick_evidence_quote_candidate(source_text))
            if not fallback_quote:
                add_warning(warnings, "QUOTE_NOT_FOUND")
                result.low_confidence = True
                return self._fail(result, FailReason.QUOTE_NOT_FOUND, FailReason.QUOTE_NOT_FOUND.value, started)
            card = card.model_copy(update={"evidence_quote": fallback_quote})
        meta.evidence = EvidenceMeta(match=match)

        guarded = apply_low_confidence_guard(card, match, warnings, meta)
        card = guarded.need_card
        if llm_failed:
            card = downgrade_card(card)

        result.need_card = card
        result.low_confidence = guarded.low_confidence or llm_failed
        result.step = PipelineStep.ANALYZED
        meta.timing.total_ms = _elapsed_ms(started)
        return result

    async def analyze_and_store(
        self,
        url: str,
        store: "AnalysisStore",
        source_id: Optional[str] = None,
        options: Optional[AnalyzeOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> AnalysisRecord:
        """分析并按规范化 URL 写入 (覆盖同一 URL 的旧记录)"""
        options = options or self.options
        result = await self.analyze(url, options=options, token=token)
        if result.ok:
            logger.info("analyzed url=%s kind=%s", result.url_normalized, result.need_card.kind)
        else:
            logger.warning("analysis failed url=%s reason=%s", url, result.fail_reason)
        record = record_input_from_result(result, source_id=source_id, max_content_chars=options.max_content_chars)
        return store.upsert(record)
