"""
Content Acquisition
讨论接口 -> 直接抓取 + readability -> Reader 代理 的多级降级链
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from config import Settings, get_settings
from core import (
    AnalysisMeta,
    DiscussionMeta,
    ExtractorUsed,
    FailReason,
    FetchAttempt,
    FetchMethod,
    PipelineStep,
    RuntimeConfig,
    WarningEntry,
)
from scrapers.hackernews_scraper import DiscussionItem, HackerNewsScraper
from sources.content_validator import validate_content
from sources.fetch_text import DEFAULT_MAX_BYTES, ContentFetcher
from sources.readability_extractor import extract_readability
from sources.reader_proxy import ReaderProxyClient
from utils.text import html_to_text, sample_text, truncate
from utils.timeout import CancellationToken

from .diagnostics import add_warning, is_timeout_message
from .url_normalize import parse_hn_item_id


logger = logging.getLogger(__name__)

COMMENT_METHOD = "hn_comment_api"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


@dataclass
class AnalyzeOptions:
    """单次分析的可调参数 (秒 / 字符 / 字节)"""

    max_content_chars: int = 12000
    extracted_len_threshold: int = 800
    direct_timeout: float = 5.0
    reader_timeout: float = 15.0
    discussion_timeout: float = 3.0
    max_fetch_bytes: int = DEFAULT_MAX_BYTES
    include_comments: bool = False
    comment_max_items: int = 30
    llm_timeout: float = 20.0
    direct_min_len: int = 100
    reader_min_len: int = 200

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        runtime_config: Optional[RuntimeConfig] = None,
    ) -> "AnalyzeOptions":
        settings = settings or get_settings()
        options = cls(
            max_content_chars=settings.pipeline.max_content_chars,
            extracted_len_threshold=settings.pipeline.extracted_len_threshold,
            direct_timeout=settings.fetch.direct_timeout,
            reader_timeout=settings.fetch.reader_timeout,
            discussion_timeout=settings.hackernews.item_timeout,
            max_fetch_bytes=settings.fetch.max_bytes,
            include_comments=settings.pipeline.include_comments,
            comment_max_items=settings.pipeline.comment_max_items,
            llm_timeout=settings.llm.timeout,
            direct_min_len=settings.pipeline.direct_min_len,
            reader_min_len=settings.pipeline.reader_min_len,
        )
        if runtime_config is not None:
            # 运行时配置覆盖静态配置
            options.max_content_chars = runtime_config.max_content_chars
            options.include_comments = runtime_config.include_comments
            options.comment_max_items = runtime_config.comment_max_items
        return options


@dataclass
class AcquiredContent:
    """获取阶段的产出; text 为空时 fail_reason 说明原因"""

    target_url: str
    step: PipelineStep = PipelineStep.FETCHED
    extractor_used: ExtractorUsed = ExtractorUsed.READABILITY
    title: Optional[str] = None
    text: Optional[str] = None
    extracted_len: int = 0
    fail_reason: Optional[FailReason] = None
    error: Optional[str] = None
    error_name: Optional[str] = None
    discussion_ms: int = 0
    fetch_ms: int = 0

    @property
    def ok(self) -> bool:
        return bool(self.text) and self.extracted_len > 0


@dataclass
class _DirectOutcome:
    failed: bool = False
    error: Optional[str] = None
    error_name: Optional[str] = None
    status: Optional[int] = None
    fallback_reason: Optional[str] = None


class ContentAcquirer:
    """
    内容获取链

    1. 讨论条目 URL: 先解析条目 (Firebase -> Algolia); 外链则改抓外链, Ask 类直接拼接讨论文本
    2. 直接抓取 + readability, 校验正文
    3. 正文缺失/过短/无效时降级到 Reader 代理
    """

    def __init__(
        self,
        fetcher: ContentFetcher,
        reader: ReaderProxyClient,
        discussion: HackerNewsScraper,
    ) -> None:
        self.fetcher = fetcher
        self.reader = reader
        self.discussion = discussion

    async def acquire(
        self,
        url_normalized: str,
        options: AnalyzeOptions,
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken] = None,
    ) -> AcquiredContent:
        content = AcquiredContent(target_url=url_normalized)
        meta.fetch.used = FetchMethod.DIRECT

        item_id = parse_hn_item_id(url_normalized)
        if item_id is not None:
            await self._resolve_discussion(item_id, content, options, warnings, meta, token)
            if content.extractor_used == ExtractorUsed.DISCUSSION_API and not content.ok:
                content.fail_reason = FailReason.TOO_SHORT
            if content.fail_reason is not None or content.extractor_used == ExtractorUsed.DISCUSSION_API:
                return content

        await self._fetch_page(content, options, warnings, meta, token)
        return content

    async def _resolve_discussion(
        self,
        item_id: int,
        content: AcquiredContent,
        options: AnalyzeOptions,
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken],
    ) -> None:
        start = time.monotonic()
        resolved = await self.discussion.resolve_item(item_id, timeout=options.discussion_timeout, token=token)
        content.discussion_ms = _elapsed_ms(start)

        for attempt in resolved.attempts:
            meta.fetch.attempts.append(attempt)
            if not attempt.ok:
                add_warning(warnings, "FETCH_FAILED", attempt=attempt.method, message=attempt.error)

        item = resolved.item
        if item is None:
            meta.discussion = DiscussionMeta(id=item_id, kind="unresolved", attempts=resolved.attempts)
            add_warning(warnings, "HN_ITEM_FETCH_FAILED", attempt="hn_item_api", message="both apis failed")
            content.fail_reason = FailReason.HN_ITEM_FETCH_FAILED
            content.error = "HN item fetch failed"
            return

        if item.url:
            content.target_url = item.url
            meta.discussion = DiscussionMeta(
                id=item_id,
                kind="link",
                target_url=item.url,
                source=resolved.source,
                attempts=resolved.attempts,
            )
        else:
            meta.discussion = DiscussionMeta(
                id=item_id,
                kind="ask",
                source=resolved.source,
                attempts=resolved.attempts,
            )
            meta.fetch.used = FetchMethod.DISCUSSION_API
            meta.fetch.fallback = False
            content.extractor_used = ExtractorUsed.DISCUSSION_API
            content.title = item.title
            discussion_start = time.monotonic()
            content.text = await self._build_discussion_text(item, options, warnings, meta, token)
            content.fetch_ms = _elapsed_ms(discussion_start)
            content.extracted_len = len(content.text)
            content.step = PipelineStep.EXTRACTED

        if resolved.source == "algolia":
            add_warning(warnings, "HN_FALLBACK", **{"from": "firebase", "to": "algolia", "hn_id": item_id})

    async def _build_discussion_text(
        self,
        item: DiscussionItem,
        options: AnalyzeOptions,
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken],
    ) -> str:
        sections: List[str] = []
        if item.title:
            sections.append(f"Title: {item.title}")
        post = html_to_text(item.text) if item.text else ""
        if post:
            sections.append(f"Post: {post}")

        comments: List[str] = []
        if options.include_comments and item.kids:
            start = time.monotonic()
            errors = 0
            for kid in item.kids:
                if len(comments) >= options.comment_max_items:
                    break
                try:
                    comment = await self.discussion.fetch_item(kid, timeout=options.discussion_timeout, token=token)
                except Exception as exc:
                    if token is not None and token.cancelled:
                        raise
                    logger.debug("comment %s fetch failed: %s", kid, exc)
                    errors += 1
                    continue
                if comment.deleted or comment.dead:
                    continue
                text = html_to_text(comment.text) if comment.text else ""
                if text:
                    comments.append(text)

            meta.fetch.attempts.append(
                FetchAttempt(
                    method=COMMENT_METHOD,
                    ok=errors == 0,
                    ms=_elapsed_ms(start),
                    error=f"comment_errors={errors}" if errors else None,
                )
            )
            if errors:
                add_warning(warnings, "HN_COMMENT_FETCH_FAILED", count=errors)

        if comments:
            sections.append("Top Comments:")
            sections.extend(f"* {comment}" for comment in comments)

        return truncate("\n\n".join(sections).strip(), options.max_content_chars)

    async def _fetch_direct(
        self,
        content: AcquiredContent,
        options: AnalyzeOptions,
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken],
    ) -> _DirectOutcome:
        outcome = _DirectOutcome()
        start = time.monotonic()
        fetched = await self.fetcher.fetch_text(
            content.target_url,
            timeout=options.direct_timeout,
            max_bytes=options.max_fetch_bytes,
            token=token,
        )
        meta.fetch.attempts.append(
            FetchAttempt(method="direct", ok=fetched.ok, ms=_elapsed_ms(start), error=None if fetched.ok else fetched.error)
        )

        if not fetched.ok:
            warning_type = "FETCH_TIMEOUT" if is_timeout_message(fetched.error) else "FETCH_FAILED"
            add_warning(warnings, warning_type, attempt="direct", message=fetched.error, status=fetched.status)
            outcome.failed = True
            outcome.error = fetched.error
            outcome.error_name = fetched.error_name
            outcome.status = fetched.status
            outcome.fallback_reason = f"HTTP_{fetched.status}" if fetched.status else "FETCH_FAILED"
            return outcome

        extracted = extract_readability(fetched.text, content.target_url, max_content_chars=options.max_content_chars)
        if not extracted.ok:
            add_warning(warnings, "READABILITY_FAILED", message=extracted.error)
            outcome.failed = True
            outcome.error = extracted.error
            outcome.error_name = extracted.error_name
            outcome.fallback_reason = "READABILITY_FAILED"
            return outcome

        content.title = extracted.title
        content.text = extracted.text
        content.extracted_len = len(extracted.text)
        content.step = PipelineStep.EXTRACTED
        if content.extracted_len < options.extracted_len_threshold:
            add_warning(warnings, "LIKELY_JS_RENDER", extracted_len=content.extracted_len)
            outcome.fallback_reason = "TOO_SHORT"

        validation = validate_content(content.text, options.direct_min_len)
        if not validation.ok:
            reason = validation.reason or "INVALID_CONTENT"
            outcome.failed = True
            outcome.error = reason
            outcome.fallback_reason = outcome.fallback_reason or f"DIRECT_{reason}"
            content.text = None
            content.extracted_len = 0
        return outcome

    async def _fetch_page(
        self,
        content: AcquiredContent,
        options: AnalyzeOptions,
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken],
    ) -> None:
        start = time.monotonic()
        direct = await self._fetch_direct(content, options, warnings, meta, token)

        should_fallback = (
            not content.text
            or content.extracted_len < options.extracted_len_threshold
            or direct.failed
        )
        if should_fallback:
            await self._fetch_reader(content, direct, options, warnings, meta, token)
        else:
            meta.fetch.used = FetchMethod.DIRECT
            meta.fetch.fallback = False
            content.extractor_used = ExtractorUsed.READABILITY

        content.fetch_ms = _elapsed_ms(start)
        if not content.ok and content.fail_reason is None:
            content.fail_reason = FailReason.TOO_SHORT

    async def _fetch_reader(
        self,
        content: AcquiredContent,
        direct: _DirectOutcome,
        options: AnalyzeOptions,
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken],
    ) -> None:
        logger.info("fetch fallback to reader proxy url=%s reason=%s", content.target_url, direct.fallback_reason)
        add_warning(
            warnings,
            "FETCH_FALLBACK",
            **{
                "from": "direct",
                "to": "reader_proxy",
                "reason": direct.fallback_reason or "low_content",
                "status": direct.status,
                "message": direct.error,
            },
        )

        start = time.monotonic()
        reader = await self.reader.fetch(
            content.target_url,
            timeout=options.reader_timeout,
            max_bytes=options.max_fetch_bytes,
            max_content_chars=options.max_content_chars,
            token=token,
        )
        meta.fetch.attempts.append(
            FetchAttempt(method="reader_proxy", ok=reader.ok, ms=_elapsed_ms(start), error=None if reader.ok else reader.error)
        )
        meta.fetch.fallback = True
        meta.fetch.direct_error = direct.error
        meta.fetch.direct_status = direct.status

        # 直接抓取已有可用正文时, Reader 失败不影响结果
        direct_unusable = direct.failed or not content.text

        if not reader.ok:
            if direct_unusable:
                content.fail_reason = FailReason.FETCH_FAILED if direct.failed else FailReason.JINA_FAILED
                content.error = direct.error or reader.error
                content.error_name = direct.error_name if direct.error else reader.error_name
                content.text = None
                content.extracted_len = 0
            return

        validation = validate_content(reader.text, options.reader_min_len)
        if not validation.ok:
            add_warning(warnings, "JINA_INVALID_CONTENT", reason=validation.reason, sample=sample_text(reader.text))
            if direct_unusable:
                content.fail_reason = FailReason.JINA_INVALID_CONTENT
                content.error = FailReason.JINA_INVALID_CONTENT.value
                content.text = None
                content.extracted_len = 0
            return

        meta.fetch.used = FetchMethod.READER_PROXY
        content.extractor_used = ExtractorUsed.READER_PROXY
        content.title = content.title or reader.title
        content.text = reader.text
        content.extracted_len = len(reader.text)
        content.step = PipelineStep.EXTRACTED
        if content.extracted_len < options.extracted_len_threshold:
            add_warning(warnings, "TOO_SHORT", extracted_len=content.extracted_len)
