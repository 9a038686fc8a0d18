"""Mapping from analysis results to persistence payloads."""

from __future__ import annotations

from typing import Optional

from core import (
    AnalysisMeta,
    AnalysisRecordInput,
    AnalysisResult,
    AnalysisStatus,
    ErrorMeta,
    ExtractorUsed,
    FailReason,
    FetchMeta,
    FetchMethod,
    PipelineStep,
    WarningEntry,
)
from utils.text import truncate


def record_input_from_result(
    result: AnalysisResult,
    source_id: Optional[str] = None,
    max_content_chars: int = 12000,
) -> AnalysisRecordInput:
    """status 仅在生成了 Need Card 时为 success"""
    status = AnalysisStatus.SUCCESS if result.need_card is not None else AnalysisStatus.FAILED
    error = None
    if status == AnalysisStatus.FAILED:
        error = result.error or (result.fail_reason.value if result.fail_reason else FailReason.ANALYSIS_FAILED.value)

    return AnalysisRecordInput(
        url=result.url,
        url_normalized=result.url_normalized or result.url,
        source_id=source_id,
        status=status,
        step=result.step,
        extractor_used=result.extractor_used,
        extracted_len=result.extracted_len,
        fail_reason=result.fail_reason,
        content_text=truncate(result.source_text, max_content_chars) or None,
        need_card=result.need_card,
        warnings=list(result.warnings),
        meta=result.meta.model_dump(mode="json", exclude_none=True),
        low_confidence=result.low_confidence,
        error=error,
    )


def failed_record_input(
    url: str,
    url_normalized: str,
    fail_reason: FailReason,
    error: BaseException,
    source_id: Optional[str] = None,
) -> AnalysisRecordInput:
    """时间盒超时或意外异常时写入的失败记录"""
    message = str(error) or fail_reason.value
    meta = AnalysisMeta(
        fetch=FetchMeta(used=FetchMethod.DIRECT),
        error=ErrorMeta(name=error.__class__.__name__, message=message, code=fail_reason.value),
    )
    return AnalysisRecordInput(
        url=url,
        url_normalized=url_normalized,
        source_id=source_id,
        status=AnalysisStatus.FAILED,
        step=PipelineStep.FETCHED,
        extractor_used=ExtractorUsed.READABILITY,
        fail_reason=fail_reason,
        warnings=[WarningEntry(type=fail_reason.value, message=message)],
        meta=meta.model_dump(mode="json", exclude_none=True),
        low_confidence=False,
        error=message,
    )
