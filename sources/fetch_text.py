"""
Content Fetcher
带超时与字节上限的 HTTP 文本抓取 (httpx)
"""
from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from config.settings import DEFAULT_USER_AGENT
from utils.exceptions import RadarError
from utils.timeout import CancellationToken, with_timeout


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 12.0
DEFAULT_MAX_BYTES = 2 * 1024 * 1024

DEFAULT_HEADERS = {
    "user-agent": DEFAULT_USER_AGENT,
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7",
}


@dataclass
class FetchTextResult:
    """抓取结果; ok=False 时 error 必有值"""

    ok: bool
    url_final: Optional[str] = None
    status: Optional[int] = None
    content_type: Optional[str] = None
    text: str = ""
    error: Optional[str] = None
    error_name: Optional[str] = None  # 捕获到异常时的类名


class ResponseTooLargeError(RadarError):
    """响应体超过字节上限"""
    pass


def _charset_of(content_type: Optional[str]) -> str:
    for part in str(content_type or "").split(";")[1:]:
        key, _, value = part.partition("=")
        if key.strip().lower() == "charset":
            charset = value.strip().strip("\"'")
            try:
                return codecs.lookup(charset).name
            except LookupError:
                return "utf-8"
    return "utf-8"


def describe_error(error: BaseException) -> str:
    """错误消息, 附带与之不同的 cause"""
    message = str(error) or error.__class__.__name__
    cause = error.__cause__
    if cause is not None:
        cause_message = str(cause) or cause.__class__.__name__
        if cause_message and cause_message != message:
            return f"{message} (cause: {cause_message})"
    return message


class ContentFetcher:
    """
    共享 httpx.AsyncClient 的文本抓取器

    fetch_text 不会因网络错误抛出异常, 一律返回 ok=False 的结构化结果。
    取消 (上层令牌或超时) 同样转换为结果。
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._headers = dict(DEFAULT_HEADERS)
        if headers:
            self._headers.update({k.lower(): v for k, v in headers.items()})
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, timeout=None)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_text(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        headers: Optional[Dict[str, str]] = None,
        token: Optional[CancellationToken] = None,
    ) -> FetchTextResult:
        merged = dict(self._headers)
        if headers:
            merged.update({k.lower(): v for k, v in headers.items()})

        async def _run(_token: CancellationToken) -> FetchTextResult:
            return await self._request(url, merged, max_bytes)

        try:
            return await with_timeout(_run, timeout, parent=token)
        except Exception as exc:
            logger.debug("fetch_text failed url=%s error=%s", url, exc)
            return FetchTextResult(ok=False, error=describe_error(exc), error_name=type(exc).__name__)

    async def _request(self, url: str, headers: Dict[str, str], max_bytes: int) -> FetchTextResult:
        client = self._get_client()
        async with client.stream("GET", url, headers=headers) as response:
            status = response.status_code
            content_type = response.headers.get("content-type")
            if not response.is_success:
                reason = response.reason_phrase or ""
                return FetchTextResult(
                    ok=False,
                    status=status,
                    content_type=content_type,
                    url_final=str(response.url),
                    error=f"HTTP {status} {reason}".strip(),
                )

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise ResponseTooLargeError(f"Response too large: {declared} bytes > {max_bytes}")

            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    raise ResponseTooLargeError(f"Response too large: more than {max_bytes} bytes")
                chunks.append(chunk)

            body = b"".join(chunks)
            text = body.decode(_charset_of(content_type), errors="replace")
            return FetchTextResult(
                ok=True,
                url_final=str(response.url),
                status=status,
                content_type=content_type,
                text=text,
            )
