"""
Cancellable Timeout
显式取消令牌 + 超时包装
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import AbortError


T = TypeVar("T")


class CancellationToken:
    """
    显式传递的取消信号

    与 asyncio 的 Task.cancel 不同, 令牌携带取消原因 (reason),
    下游可以把它作为 parent 传给嵌套的 with_timeout, 使外层时间盒
    能够终止内层的网络请求。
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[BaseException] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def cancel(self, reason: Optional[BaseException] = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason or AbortError("Operation aborted", origin="parent")
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise _parent_abort(self)


def _parent_abort(parent: CancellationToken) -> AbortError:
    reason = parent.reason
    message = getattr(reason, "message", None) or str(reason or "") or "Operation aborted"
    error = AbortError(message, origin="parent")
    error.__cause__ = reason
    return error


def _consume_result(task: "asyncio.Future") -> None:
    # 被放弃的任务若之后抛错, 取走异常避免 "never retrieved" 警告
    if not task.cancelled():
        task.exception()


async def with_timeout(
    fn: Callable[[CancellationToken], Awaitable[T]],
    timeout: float,
    parent: Optional[CancellationToken] = None,
) -> T:
    """
    在时间上限内运行 fn(token)

    Args:
        fn: 接收子令牌的协程工厂
        timeout: 超时秒数
        parent: 上层取消令牌 (可选)

    Raises:
        AbortError: origin="timeout" 时消息为 "Timeout after {ms}ms";
            origin="parent" 时 __cause__ 为上层取消原因
    """
    if parent is not None and parent.cancelled:
        raise _parent_abort(parent)

    token = CancellationToken()
    task = asyncio.ensure_future(fn(token))
    task.add_done_callback(_consume_result)
    waiters = {task}
    parent_waiter = None
    if parent is not None:
        parent_waiter = asyncio.ensure_future(parent.wait())
        waiters.add(parent_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=max(0.0, float(timeout)),
            return_when=asyncio.FIRST_COMPLETED,
        )
        if task in done:
            return task.result()
        if parent_waiter is not None and parent_waiter in done:
            error = _parent_abort(parent)
        else:
            error = AbortError(f"Timeout after {int(round(timeout * 1000))}ms", origin="timeout")
        token.cancel(error)
        raise error
    finally:
        if parent_waiter is not None and not parent_waiter.done():
            parent_waiter.cancel()
        if not task.done():
            token.cancel()
            task.cancel()
