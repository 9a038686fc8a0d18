"""
Hacker News Adapter
讨论条目解析 (Firebase 主接口, Algolia 备用) 与候选发现
API 文档: https://github.com/HackerNews/API , https://hn.algolia.com/api
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from core import DiscoveryResult, FetchAttempt, Source
from pipeline.url_normalize import hn_permalink
from utils.exceptions import DiscussionItemFetchError, HttpStatusError, RadarError
from utils.retry import with_retry
from utils.timeout import CancellationToken, with_timeout

from .base import RateLimitedAdapter


logger = logging.getLogger(__name__)

METHOD_FIREBASE = "hn_item_api_firebase"
METHOD_ALGOLIA = "hn_item_api_algolia"

DEFAULT_TIMEOUT = 8.0
RETRY_BACKOFF = 0.25
FIREBASE_RETRIES = 2
ALGOLIA_RETRIES = 1


@dataclass
class DiscussionItem:
    """统一后的讨论条目 (Firebase / Algolia 字段对齐)"""

    id: int
    type: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    text: Optional[str] = None
    kids: List[int] = field(default_factory=list)
    dead: bool = False
    deleted: bool = False


@dataclass
class DiscussionResolveResult:
    item: Optional[DiscussionItem]
    source: Optional[str]
    attempts: List[FetchAttempt] = field(default_factory=list)


class EmptyItemError(RadarError):
    """接口返回了空条目"""
    pass


def _int_list(values: Any) -> List[int]:
    if not isinstance(values, list):
        return []
    return [value for value in values if isinstance(value, int) and not isinstance(value, bool)]


def _from_firebase(data: Dict[str, Any], fallback_id: int) -> DiscussionItem:
    return DiscussionItem(
        id=data.get("id") or fallback_id,
        type=data.get("type"),
        title=data.get("title"),
        url=data.get("url"),
        text=data.get("text"),
        kids=_int_list(data.get("kids")),
        dead=bool(data.get("dead")),
        deleted=bool(data.get("deleted")),
    )


def _from_algolia(data: Dict[str, Any], fallback_id: int) -> DiscussionItem:
    children = data.get("children") or []
    kids = [child.get("id") for child in children if isinstance(child, dict)]
    return DiscussionItem(
        id=data.get("id") or fallback_id,
        type=data.get("type"),
        title=data.get("title"),
        url=data.get("url"),
        text=data.get("text"),
        kids=_int_list(kids),
        dead=bool(data.get("dead")),
        deleted=bool(data.get("deleted")),
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class HackerNewsScraper(RateLimitedAdapter):
    """
    Hacker News 适配器

    特性:
    - 条目解析: Firebase (2 次重试) 失败后切换 Algolia (1 次重试)
    - 每次尝试都记录 method / ok / ms / error
    - discover(): 从入口 ID 列表 (如 topstories.json) 产出候选 URL
    """

    FIREBASE_URL = "https://hacker-news.firebaseio.com/v0"
    ALGOLIA_URL = "https://hn.algolia.com/api/v1"

    def __init__(
        self,
        firebase_url: Optional[str] = None,
        algolia_url: Optional[str] = None,
        requests_per_second: float = 10.0,
        discovery_timeout: float = DEFAULT_TIMEOUT,
        discovery_item_timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(requests_per_second=requests_per_second)
        self.firebase_url = (firebase_url or self.FIREBASE_URL).rstrip("/")
        self.algolia_url = (algolia_url or self.ALGOLIA_URL).rstrip("/")
        self.discovery_timeout = discovery_timeout
        self.discovery_item_timeout = discovery_item_timeout
        self._session = session

    @property
    def source_type(self) -> str:
        return "hacker_news"

    @property
    def name(self) -> str:
        return "Hacker News"

    async def _get_session(self) -> aiohttp.ClientSession:
        """获取或创建 HTTP 会话"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _get_json(self, url: str) -> Any:
        await self._wait_for_rate_limit()
        session = await self._get_session()
        async with session.get(url, headers={"accept": "application/json"}) as response:
            if response.status >= 400:
                reason = response.reason or ""
                raise HttpStatusError(
                    f"HTTP {response.status} {reason}".strip(),
                    status=response.status,
                    url=url,
                )
            return await response.json(content_type=None)

    async def _fetch_json(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        async def _run(_token: CancellationToken) -> Any:
            return await self._get_json(url)

        return await with_timeout(_run, timeout, parent=token)

    async def fetch_item_ids(
        self,
        entry_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        token: Optional[CancellationToken] = None,
    ) -> List[int]:
        """读取入口 ID 列表, 仅保留整数"""

        async def _load() -> List[int]:
            data = await self._fetch_json(entry_url, timeout=timeout, token=token)
            if not isinstance(data, list):
                raise RadarError("Invalid HN id list", {"entry_url": entry_url})
            return _int_list(data)

        return await with_retry(_load, retries=2, backoff=RETRY_BACKOFF)

    async def _fetch_with_attempts(
        self,
        method: str,
        url: str,
        retries: int,
        timeout: float,
        token: Optional[CancellationToken],
        attempts: List[FetchAttempt],
    ) -> Optional[Dict[str, Any]]:
        async def _once() -> Dict[str, Any]:
            start = time.monotonic()
            try:
                data = await self._fetch_json(url, timeout=timeout, token=token)
                if not data or not isinstance(data, dict):
                    raise EmptyItemError(f"Empty item response from {method}")
            except Exception as exc:
                attempts.append(FetchAttempt(method=method, ok=False, ms=_elapsed_ms(start), error=str(exc)))
                raise
            attempts.append(FetchAttempt(method=method, ok=True, ms=_elapsed_ms(start)))
            return data

        try:
            return await with_retry(_once, retries=retries, backoff=RETRY_BACKOFF)
        except Exception as exc:
            logger.debug("[Hacker News] %s failed for %s: %s", method, url, exc)
            return None

    async def resolve_item(
        self,
        item_id: int,
        timeout: float = DEFAULT_TIMEOUT,
        token: Optional[CancellationToken] = None,
    ) -> DiscussionResolveResult:
        """
        解析讨论条目

        Returns:
            DiscussionResolveResult; 两个接口都失败时 item/source 为 None
        """
        attempts: List[FetchAttempt] = []

        data = await self._fetch_with_attempts(
            METHOD_FIREBASE,
            f"{self.firebase_url}/item/{item_id}.json",
            FIREBASE_RETRIES,
            timeout,
            token,
            attempts,
        )
        if data is not None:
            return DiscussionResolveResult(item=_from_firebase(data, item_id), source="firebase", attempts=attempts)

        if token is not None:
            token.raise_if_cancelled()

        logger.warning("[Hacker News] Firebase failed for item %s, falling back to Algolia", item_id)
        data = await self._fetch_with_attempts(
            METHOD_ALGOLIA,
            f"{self.algolia_url}/items/{item_id}",
            ALGOLIA_RETRIES,
            timeout,
            token,
            attempts,
        )
        if data is not None:
            return DiscussionResolveResult(item=_from_algolia(data, item_id), source="algolia", attempts=attempts)

        return DiscussionResolveResult(item=None, source=None, attempts=attempts)

    async def fetch_item(
        self,
        item_id: int,
        timeout: float = DEFAULT_TIMEOUT,
        token: Optional[CancellationToken] = None,
    ) -> DiscussionItem:
        resolved = await self.resolve_item(item_id, timeout=timeout, token=token)
        if resolved.item is None:
            raise DiscussionItemFetchError("HN item fetch failed", item_id=item_id)
        return resolved.item

    async def discover(
        self,
        source: Source,
        token: Optional[CancellationToken] = None,
    ) -> List[DiscoveryResult]:
        ids = await self.fetch_item_ids(source.entry_url, timeout=self.discovery_timeout, token=token)
        selected = ids[: max(0, source.discover_limit)]

        results: List[DiscoveryResult] = []
        seen = set()
        for item_id in selected:
            try:
                item = await self.fetch_item(item_id, timeout=self.discovery_item_timeout, token=token)
            except DiscussionItemFetchError as exc:
                logger.debug("[Hacker News] skip item %s: %s", item_id, exc)
                continue

            url = item.url or hn_permalink(item_id)
            if url in seen:
                continue
            seen.add(url)
            results.append(
                DiscoveryResult(
                    source_id=source.id,
                    url=url,
                    origin_title=item.title,
                    origin_id=str(item_id),
                )
            )

        self._log_discover(source, len(results))
        return results
