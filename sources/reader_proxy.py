"""
Reader Proxy
通过 Jina Reader 等纯文本渲染代理获取页面正文
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from utils.text import clean_text, truncate
from utils.timeout import CancellationToken

from .fetch_text import DEFAULT_MAX_BYTES, ContentFetcher


logger = logging.getLogger(__name__)

DEFAULT_READER_BASE_URL = "https://r.jina.ai/"
READER_USER_AGENT = "Mozilla/5.0 (compatible; DemandRadar/1.0; +reader)"
TITLE_SCAN_LINES = 10
MAX_TITLE_CHARS = 200


@dataclass
class ReaderResult:
    ok: bool
    text: str = ""
    title: Optional[str] = None
    status: Optional[int] = None
    error: Optional[str] = None
    error_name: Optional[str] = None


def infer_title(text: str) -> Optional[str]:
    """前 10 个非空行中的 Markdown 标题或 "Title:" 行"""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    for line in lines[:TITLE_SCAN_LINES]:
        if line.startswith("#"):
            title = line.lstrip("#").strip()
        elif line.lower().startswith("title:"):
            title = line[len("title:"):].strip()
        else:
            continue
        if title:
            return title[:MAX_TITLE_CHARS]
    return None


class ReaderProxyClient:
    """Reader 代理客户端, 复用 ContentFetcher 的 httpx 连接池"""

    def __init__(
        self,
        fetcher: ContentFetcher,
        base_url: str = DEFAULT_READER_BASE_URL,
        api_key: Optional[str] = None,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.api_key = api_key

    def proxy_url(self, url: str) -> str:
        return f"{self.base_url}{url}"

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "text/plain", "user-agent": READER_USER_AGENT}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    async def fetch(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_content_chars: int = 12000,
        token: Optional[CancellationToken] = None,
    ) -> ReaderResult:
        result = await self.fetcher.fetch_text(
            self.proxy_url(url),
            timeout=timeout,
            max_bytes=max_bytes,
            headers=self._headers(),
            token=token,
        )
        if not result.ok:
            return ReaderResult(ok=False, status=result.status, error=result.error, error_name=result.error_name)

        text = truncate(clean_text(result.text), max_content_chars)
        return ReaderResult(ok=True, text=text, title=infer_title(text), status=result.status)
