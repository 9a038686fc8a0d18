from __future__ import annotations

import asyncio

import httpx
import pytest

from utils.exceptions import AbortError, HttpStatusError
from utils.retry import is_transient_error, with_retry
from utils.timeout import CancellationToken, with_timeout


@pytest.mark.asyncio
async def test_with_timeout_returns_result() -> None:
    async def _fn(token: CancellationToken) -> str:
        return "ok"

    assert await with_timeout(_fn, 1.0) == "ok"


@pytest.mark.asyncio
async def test_with_timeout_aborts_slow_call_and_cancels_child_token() -> None:
    seen = {}

    async def _slow(token: CancellationToken) -> None:
        seen["token"] = token
        await asyncio.sleep(5)

    with pytest.raises(AbortError) as excinfo:
        await with_timeout(_slow, 0.05)

    assert excinfo.value.is_timeout
    assert str(excinfo.value) == "Timeout after 50ms"
    assert seen["token"].cancelled


@pytest.mark.asyncio
async def test_with_timeout_propagates_parent_cancellation() -> None:
    parent = CancellationToken()

    async def _slow(token: CancellationToken) -> None:
        await asyncio.sleep(5)

    async def _cancel_soon() -> None:
        await asyncio.sleep(0.02)
        parent.cancel(AbortError("Timeout after 20ms", origin="timeout"))

    canceller = asyncio.ensure_future(_cancel_soon())
    with pytest.raises(AbortError) as excinfo:
        await with_timeout(_slow, 5.0, parent=parent)
    await canceller

    assert excinfo.value.origin == "parent"
    assert "Timeout after 20ms" in str(excinfo.value)


@pytest.mark.asyncio
async def test_with_timeout_rejects_already_cancelled_parent() -> None:
    parent = CancellationToken()
    parent.cancel()
    called = []

    async def _fn(token: CancellationToken) -> None:
        called.append(True)

    with pytest.raises(AbortError):
        await with_timeout(_fn, 1.0, parent=parent)
    assert called == []


def test_is_transient_error_classification() -> None:
    request = httpx.Request("GET", "https://example.com")
    assert is_transient_error(HttpStatusError("HTTP 503", status=503))
    assert is_transient_error(HttpStatusError("HTTP 429", status=429))
    assert not is_transient_error(HttpStatusError("HTTP 404", status=404))
    assert is_transient_error(httpx.ConnectError("boom", request=request))
    assert is_transient_error(AbortError("Timeout after 5ms", origin="timeout"))
    assert not is_transient_error(AbortError("aborted", origin="parent"))
    assert not is_transient_error(ValueError("bad json"))
    assert is_transient_error(RuntimeError("socket ECONNRESET"))


@pytest.mark.asyncio
async def test_with_retry_retries_transient_then_succeeds() -> None:
    calls = []

    async def _flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise HttpStatusError("HTTP 502", status=502)
        return "done"

    assert await with_retry(_flaky, retries=2, backoff=0) == "done"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_with_retry_clamps_retries_and_reraises_last_error() -> None:
    calls = []

    async def _always() -> None:
        calls.append(1)
        raise HttpStatusError("HTTP 500", status=500)

    with pytest.raises(HttpStatusError):
        await with_retry(_always, retries=10, backoff=0)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_permanent_errors() -> None:
    calls = []

    async def _bad() -> None:
        calls.append(1)
        raise HttpStatusError("HTTP 403", status=403)

    with pytest.raises(HttpStatusError):
        await with_retry(_bad, retries=2, backoff=0)
    assert calls == [1]
