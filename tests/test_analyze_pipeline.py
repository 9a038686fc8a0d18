from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from core import AnalysisStatus, DemandCard, ExtractorUsed, FailReason, FetchAttempt, FetchMethod, WtpSignal
from pipeline.acquisition import AnalyzeOptions, ContentAcquirer
from pipeline.analyze import AnalysisPipeline
from scrapers.hackernews_scraper import DiscussionItem, DiscussionResolveResult
from sources.fetch_text import FetchTextResult
from sources.reader_proxy import ReaderResult
from storage.memory import InMemoryAnalysisStore
from utils.exceptions import DiscussionItemFetchError


PARAGRAPHS = [
    "I run a small design agency and every month I spend two full days chasing unpaid invoices from clients.",
    "Most of them are not malicious, they simply forget, and the reminder emails are awkward to write by hand.",
    "I tried the invoicing features in my accounting package but they only send one generic reminder.",
    "What I need is a tool that escalates politely over a few weeks and stops as soon as the bank shows payment.",
    "I would happily pay twenty dollars a month for something that just did this one job properly.",
    "Right now the workaround is a spreadsheet with due dates and a calendar reminder every Monday morning.",
    "Talking to other agency owners, almost everyone has the same ritual and nobody enjoys it at all.",
    "If you have built something like this, or know a product that does it well, I would love to hear about it.",
    "The hardest part is keeping the tone friendly while still making it clear that the payment is overdue.",
    "Some clients pay within an hour of a nudge, others need three or four messages spread over a month.",
    "Tracking which stage each client is at is the part that eats most of the time every single month.",
]
ARTICLE_HTML = (
    "<html><head><title>Chasing invoices</title></head><body><article><h1>Chasing invoices</h1>"
    + "".join(f"<p>{p}</p>" for p in PARAGRAPHS)
    + "</article></body></html>"
)
READER_TEXT = "# Reader copy of the page\n\n" + "\n\n".join(PARAGRAPHS)


class FakeFetcher:
    def __init__(self, pages: Dict[str, FetchTextResult]):
        self.pages = pages
        self.calls: List[str] = []

    async def fetch_text(self, url: str, **kwargs) -> FetchTextResult:
        self.calls.append(url)
        return self.pages.get(url) or FetchTextResult(ok=False, status=404, error="HTTP 404 Not Found")


class FakeReader:
    def __init__(self, result: Optional[ReaderResult] = None):
        self.result = result or ReaderResult(ok=False, status=502, error="HTTP 502 Bad Gateway")
        self.calls: List[str] = []

    async def fetch(self, url: str, **kwargs) -> ReaderResult:
        self.calls.append(url)
        return self.result


class FakeDiscussion:
    def __init__(self, items: Dict[int, DiscussionItem], source: str = "firebase"):
        self.items = items
        self.source = source

    async def resolve_item(self, item_id: int, timeout: float = 3.0, token=None) -> DiscussionResolveResult:
        item = self.items.get(item_id)
        if item is None:
            attempts = [
                FetchAttempt(method="hn_item_api_firebase", ok=False, error="HTTP 500"),
                FetchAttempt(method="hn_item_api_algolia", ok=False, error="HTTP 500"),
            ]
            return DiscussionResolveResult(item=None, source=None, attempts=attempts)
        attempts = [FetchAttempt(method=f"hn_item_api_{self.source}", ok=True)]
        if self.source == "algolia":
            attempts.insert(0, FetchAttempt(method="hn_item_api_firebase", ok=False, error="HTTP 503"))
        return DiscussionResolveResult(item=item, source=self.source, attempts=attempts)

    async def fetch_item(self, item_id: int, timeout: float = 3.0, token=None) -> DiscussionItem:
        item = self.items.get(item_id)
        if item is None:
            raise DiscussionItemFetchError("HN item fetch failed", item_id=item_id)
        return item


class FixedExtractor:
    def __init__(self, card):
        self.card = card

    async def generate(self, source_text, source_url, title, warnings, meta, token=None, timeout=None):
        return self.card


def _pipeline(fetcher=None, reader=None, discussion=None, extractor=None) -> AnalysisPipeline:
    acquirer = ContentAcquirer(fetcher or FakeFetcher({}), reader or FakeReader(), discussion or FakeDiscussion({}))
    return AnalysisPipeline(acquirer, extractor, options=AnalyzeOptions())


def _types(result) -> List[str]:
    return [warning.type for warning in result.warnings]


def _ok_page(html: str = ARTICLE_HTML) -> FetchTextResult:
    return FetchTextResult(ok=True, status=200, text=html, content_type="text/html")


@pytest.mark.asyncio
async def test_direct_fetch_with_heuristic_card() -> None:
    url = "https://blog.example.com/invoices/"
    pipeline = _pipeline(fetcher=FakeFetcher({"https://blog.example.com/invoices": _ok_page()}))

    result = await pipeline.analyze(url)

    assert result.ok
    assert result.url_normalized == "https://blog.example.com/invoices"
    assert result.extractor_used == ExtractorUsed.READABILITY
    assert result.meta.fetch.used == FetchMethod.DIRECT
    assert result.meta.fetch.fallback is False
    assert result.need_card.evidence_quote in result.source_text
    assert result.need_card.source_url == "https://blog.example.com/invoices"
    # 无 LLM 时走启发式, 必然低置信度
    assert result.low_confidence
    assert "LOW_CONFIDENCE" in _types(result)
    assert result.need_card.wtp_signal in (WtpSignal.WEAK, WtpSignal.NONE)


@pytest.mark.asyncio
async def test_direct_http_error_falls_back_to_reader() -> None:
    fetcher = FakeFetcher({"https://x.example.com/p": FetchTextResult(ok=False, status=403, error="HTTP 403 Forbidden")})
    reader = FakeReader(ReaderResult(ok=True, status=200, text=READER_TEXT, title="Reader copy of the page"))

    result = await _pipeline(fetcher=fetcher, reader=reader).analyze("https://x.example.com/p")

    assert result.ok
    assert result.extractor_used == ExtractorUsed.READER_PROXY
    assert result.meta.fetch.used == FetchMethod.READER_PROXY
    assert result.meta.fetch.fallback is True
    assert result.meta.fetch.direct_status == 403
    assert result.title == "Reader copy of the page"
    fallback = next(w for w in result.warnings if w.type == "FETCH_FALLBACK")
    assert fallback.model_dump()["reason"] == "HTTP_403"
    assert [a.method for a in result.meta.fetch.attempts] == ["direct", "reader_proxy"]


@pytest.mark.asyncio
async def test_direct_and_reader_failure_reports_direct_error() -> None:
    fetcher = FakeFetcher({"https://x.example.com/p": FetchTextResult(ok=False, error="Timeout after 5000ms")})

    result = await _pipeline(fetcher=fetcher).analyze("https://x.example.com/p")

    assert not result.ok
    assert result.fail_reason == FailReason.FETCH_FAILED
    assert result.error == "Timeout after 5000ms"
    assert "FETCH_TIMEOUT" in _types(result)
    assert result.meta.error.code == "FETCH_FAILED"
    assert result.meta.error.name is None


@pytest.mark.asyncio
async def test_caught_fetch_exception_name_is_kept_in_error_meta() -> None:
    failure = FetchTextResult(ok=False, error="connection refused", error_name="ConnectError")
    fetcher = FakeFetcher({"https://x.example.com/p": failure})

    result = await _pipeline(fetcher=fetcher).analyze("https://x.example.com/p")

    assert result.fail_reason == FailReason.FETCH_FAILED
    assert result.meta.error.name == "ConnectError"
    assert result.meta.error.message == "connection refused"


@pytest.mark.asyncio
async def test_blocked_reader_content_is_rejected() -> None:
    fetcher = FakeFetcher({"https://x.example.com/p": FetchTextResult(ok=False, status=503, error="HTTP 503")})
    blocked = "Attention Required! Please complete the captcha below to continue. " * 5
    reader = FakeReader(ReaderResult(ok=True, status=200, text=blocked))

    result = await _pipeline(fetcher=fetcher, reader=reader).analyze("https://x.example.com/p")

    assert result.fail_reason == FailReason.JINA_INVALID_CONTENT
    invalid = next(w for w in result.warnings if w.type == "JINA_INVALID_CONTENT")
    assert invalid.model_dump()["reason"].startswith("keyword:")


@pytest.mark.asyncio
async def test_short_direct_text_survives_reader_failure() -> None:
    html = "<html><body><article>" + "".join(f"<p>{p}</p>" for p in PARAGRAPHS[:3]) + "</article></body></html>"
    fetcher = FakeFetcher({"https://x.example.com/short": _ok_page(html)})

    result = await _pipeline(fetcher=fetcher).analyze("https://x.example.com/short")

    assert result.ok
    assert result.extractor_used == ExtractorUsed.READABILITY
    assert "LIKELY_JS_RENDER" in _types(result)
    assert result.meta.fetch.fallback is True


@pytest.mark.asyncio
async def test_ask_item_builds_discussion_text_with_comments() -> None:
    items = {
        100: DiscussionItem(
            id=100,
            type="story",
            title="Ask HN: How do you track side project revenue?",
            text="<p>I need a simple way to track which side projects make money, spreadsheets are too painful.</p>",
            kids=[101, 102, 103],
        ),
        101: DiscussionItem(id=101, type="comment", text="I use a <i>notion</i> template, it is slow though."),
        103: DiscussionItem(id=103, type="comment", text="dead", dead=True),
    }
    fetcher = FakeFetcher({})
    pipeline = _pipeline(fetcher=fetcher, discussion=FakeDiscussion(items))
    options = AnalyzeOptions(include_comments=True, comment_max_items=5)

    result = await pipeline.analyze("https://news.ycombinator.com/item?id=100", options=options)

    assert result.ok
    assert fetcher.calls == []
    assert result.extractor_used == ExtractorUsed.DISCUSSION_API
    assert result.meta.fetch.used == FetchMethod.DISCUSSION_API
    assert result.meta.discussion.kind == "ask"
    assert result.source_text.startswith("Title: Ask HN: How do you track side project revenue?")
    assert "Post: I need a simple way" in result.source_text
    assert "Top Comments:\n\n* I use a notion template, it is slow though." in result.source_text
    assert "dead" not in result.source_text
    assert "HN_COMMENT_FETCH_FAILED" in _types(result)
    comment_attempt = result.meta.fetch.attempts[-1]
    assert comment_attempt.method == "hn_comment_api"
    assert comment_attempt.error == "comment_errors=1"
    assert result.need_card.source_url == "https://news.ycombinator.com/item?id=100"


@pytest.mark.asyncio
async def test_link_item_retargets_fetch_and_notes_algolia_fallback() -> None:
    items = {7: DiscussionItem(id=7, type="story", title="Show HN", url="https://blog.example.com/invoices")}
    fetcher = FakeFetcher({"https://blog.example.com/invoices": _ok_page()})
    pipeline = _pipeline(fetcher=fetcher, discussion=FakeDiscussion(items, source="algolia"))

    result = await pipeline.analyze("https://news.ycombinator.com/item?id=7")

    assert result.ok
    assert fetcher.calls == ["https://blog.example.com/invoices"]
    assert result.meta.discussion.kind == "link"
    assert result.meta.discussion.target_url == "https://blog.example.com/invoices"
    assert result.need_card.source_url == "https://blog.example.com/invoices"
    assert "HN_FALLBACK" in _types(result)


@pytest.mark.asyncio
async def test_unresolved_item_fails_without_page_fetch() -> None:
    fetcher = FakeFetcher({})
    result = await _pipeline(fetcher=fetcher).analyze("https://news.ycombinator.com/item?id=404")

    assert result.fail_reason == FailReason.HN_ITEM_FETCH_FAILED
    assert result.error == "HN item fetch failed"
    assert result.meta.discussion.kind == "unresolved"
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_invalid_url_is_fetch_failed() -> None:
    result = await _pipeline().analyze("ftp://example.com/file")

    assert result.fail_reason == FailReason.FETCH_FAILED
    assert result.url_normalized == "ftp://example.com/file"
    assert result.need_card is None
    assert result.meta.error.name == "InvalidUrlError"
    assert result.meta.error.code == "FETCH_FAILED"


@pytest.mark.asyncio
async def test_model_card_source_url_and_quote_are_corrected() -> None:
    card = DemandCard(
        title="Invoice chasing",
        who="agency owners",
        pain="Two days a month lost to chasing unpaid invoices",
        trigger="Month end when clients forget to pay",
        workaround="A spreadsheet with due dates and calendar reminders",
        wtp_signal=WtpSignal.STRONG,
        evidence_quote="This sentence does not appear anywhere in the source text at all.",
        source_url="https://elsewhere.example.com/",
    )
    fetcher = FakeFetcher({"https://blog.example.com/invoices": _ok_page()})
    pipeline = _pipeline(fetcher=fetcher, extractor=FixedExtractor(card))

    result = await pipeline.analyze("https://blog.example.com/invoices")

    assert result.ok
    assert "SOURCE_URL_MISMATCH" in _types(result)
    assert result.need_card.source_url == "https://blog.example.com/invoices"
    assert result.need_card.evidence_quote in result.source_text
    assert result.meta.evidence.match == "fail"
    assert result.low_confidence
    assert result.need_card.wtp_signal == WtpSignal.WEAK


@pytest.mark.asyncio
async def test_analyze_and_store_upserts_by_normalized_url() -> None:
    store = InMemoryAnalysisStore()
    fetcher = FakeFetcher({"https://blog.example.com/invoices": _ok_page()})
    pipeline = _pipeline(fetcher=fetcher)

    first = await pipeline.analyze_and_store("https://blog.example.com/invoices?utm_source=hn", store, source_id="s1")
    second = await pipeline.analyze_and_store("https://blog.example.com/invoices/", store)

    assert first.status == AnalysisStatus.SUCCESS
    assert first.source_id == "s1"
    assert second.id == first.id
    assert store.list_existing(["https://blog.example.com/invoices", "https://other.example.com/"]) == [
        "https://blog.example.com/invoices"
    ]
