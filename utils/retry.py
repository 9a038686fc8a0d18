"""
Retry Utilities
基于 tenacity 的有界重试, 仅对瞬时错误重试
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp
import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import AbortError


logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 2

_TRANSIENT_MESSAGE = re.compile(
    r"timeout|timed out|aborted|ETIMEDOUT|ECONNRESET|ENOTFOUND|EAI_AGAIN|ECONNREFUSED",
    re.IGNORECASE,
)
_HTTP_STATUS_MESSAGE = re.compile(r"HTTP (429|5\d\d)\b")


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def is_transient_error(error: BaseException) -> bool:
    """
    判断错误是否值得重试

    重试: 429 / 5xx, 连接类与超时类错误, 本层超时触发的 AbortError
    不重试: 上层取消, 校验/解析错误, 其他 4xx
    """
    if isinstance(error, AbortError):
        return error.is_timeout

    status = _status_of(error)
    if status is not None:
        return status == 429 or status >= 500

    if isinstance(
        error,
        (
            httpx.TransportError,
            aiohttp.ClientConnectionError,
            aiohttp.ServerTimeoutError,
            asyncio.TimeoutError,
            ConnectionError,
            TimeoutError,
        ),
    ):
        return True

    if isinstance(error, (ValueError, TypeError, KeyError)):
        return False

    message = str(error or "")
    return bool(_TRANSIENT_MESSAGE.search(message) or _HTTP_STATUS_MESSAGE.search(message))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 0,
    backoff: float = 0.25,
    max_backoff: float = 1.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    有界指数退避重试

    Args:
        fn: 无参协程工厂, 每次尝试调用一次
        retries: 额外重试次数 (上限 2)
        backoff: 初始退避秒数, 第 n 次重试等待 min(backoff * 2**n, max_backoff)
        max_backoff: 退避上限
        should_retry: 自定义重试判定, 默认 is_transient_error

    Returns:
        fn 的返回值; 所有尝试失败时重新抛出最后一次错误
    """
    retries = max(0, min(MAX_RETRIES, int(retries)))
    predicate = should_retry or is_transient_error

    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff, min=0, max=max_backoff),
        retry=retry_if_exception(predicate),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise RuntimeError("retry loop exited without result")  # pragma: no cover
