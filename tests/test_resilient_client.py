"""Tests for the resilient call wrapper: retries, timeouts, breaker integration."""

import asyncio

import httpx
import pytest

from enrichment.errors import PermanentUpstreamError, TransientUpstreamError
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.resilience.client import ResilientClient, classify_error


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"status {status_code}")
        self.status_code = status_code


class TestClassifyError:
    def test_message_rules(self) -> None:
        assert classify_error(Exception("rate limit")) is TransientUpstreamError
        assert classify_error(Exception("503 timeout")) is TransientUpstreamError
        assert classify_error(Exception("401 unauthorized")) is PermanentUpstreamError
        assert classify_error(Exception("invalid api key")) is PermanentUpstreamError

    def test_status_codes_win_over_message(self) -> None:
        assert classify_error(_StatusError(429)) is TransientUpstreamError
        assert classify_error(_StatusError(502)) is TransientUpstreamError
        assert classify_error(_StatusError(400)) is PermanentUpstreamError
        assert classify_error(_StatusError(404)) is PermanentUpstreamError

    def test_exception_types(self) -> None:
        assert classify_error(asyncio.TimeoutError()) is TransientUpstreamError
        assert classify_error(httpx.ConnectError("refused")) is TransientUpstreamError
        assert classify_error(ValueError("bad json")) is PermanentUpstreamError

    def test_unknown_defaults_to_transient(self) -> None:
        assert classify_error(RuntimeError("something odd")) is TransientUpstreamError


def _client(breakers: CircuitBreakerRegistry, **kwargs: object) -> ResilientClient:
    kwargs.setdefault("base_delay", 0)
    return ResilientClient(breakers, **kwargs)  # type: ignore[arg-type]


class TestCall:
    @pytest.mark.asyncio
    async def test_success_first_try(self, breakers: CircuitBreakerRegistry) -> None:
        async def op() -> str:
            return "ok"

        result = await _client(breakers).call("completion", op)
        assert result.success
        assert result.data == "ok"
        assert result.retry_count == 0

    @pytest.mark.asyncio
    async def test_transient_is_retried(self, breakers: CircuitBreakerRegistry) -> None:
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise TransientUpstreamError("HTTP 503", status_code=503)
            return "ok"

        result = await _client(breakers, max_retries=2).call("completion", op)
        assert result.success
        assert result.retry_count == 1
        assert calls == 2
        assert breakers.snapshot("completion").failures == 0

    @pytest.mark.asyncio
    async def test_permanent_fails_fast(self, breakers: CircuitBreakerRegistry) -> None:
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            raise Exception("401 unauthorized")

        result = await _client(breakers, max_retries=3).call("completion", op)
        assert not result.success
        assert calls == 1
        assert result.retry_count == 0
        assert breakers.snapshot("completion").failures == 1

    @pytest.mark.asyncio
    async def test_exhausted_budget_counts_one_breaker_failure(self, breakers: CircuitBreakerRegistry) -> None:
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            raise TransientUpstreamError("HTTP 500", status_code=500)

        result = await _client(breakers, max_retries=2).call("web_search", op)
        assert not result.success
        assert calls == 3
        assert result.retry_count == 2
        assert result.status_code == 500
        assert breakers.snapshot("web_search").failures == 1

    @pytest.mark.asyncio
    async def test_timeout(self, breakers: CircuitBreakerRegistry) -> None:
        async def op() -> str:
            await asyncio.sleep(5)
            return "late"

        result = await _client(breakers, max_retries=0).call("completion", op, timeout=0.01)
        assert not result.success
        assert result.error == "Request timed out"

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self) -> None:
        breakers = CircuitBreakerRegistry(failure_threshold=1)
        breakers.record_failure("completion")
        called = False

        async def op() -> str:
            nonlocal called
            called = True
            return "ok"

        result = await _client(breakers).call("completion", op)
        assert result.short_circuited
        assert not result.success
        assert not called

    @pytest.mark.asyncio
    async def test_repeated_failures_open_breaker(self) -> None:
        breakers = CircuitBreakerRegistry(failure_threshold=5)
        client = _client(breakers, max_retries=0)

        async def op() -> str:
            raise PermanentUpstreamError("HTTP 400", status_code=400)

        for _ in range(5):
            await client.call("completion", op)
        sixth = await client.call("completion", op)
        assert sixth.short_circuited


class TestRequestJson:
    @pytest.mark.asyncio
    async def test_429_then_success(self, breakers: CircuitBreakerRegistry) -> None:
        statuses = [429, 200]

        def handler(request: httpx.Request) -> httpx.Response:
            status = statuses.pop(0)
            return httpx.Response(status, json={"ok": status == 200})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = _client(breakers, max_retries=2, http_client=http)
        result = await client.request_json("web_search", "GET", "https://search.test/q", params={"q": "acme"})
        assert result.success
        assert result.data == {"ok": True}
        assert result.retry_count == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_400_not_retried(self, breakers: CircuitBreakerRegistry) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, json={"error": "bad"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await _client(breakers, max_retries=2, http_client=http).request_json(
            "web_search", "GET", "https://search.test/q"
        )
        assert not result.success
        assert result.status_code == 400
        assert calls == 1

    @pytest.mark.asyncio
    async def test_malformed_json_is_permanent(self, breakers: CircuitBreakerRegistry) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, content=b"<html>not json</html>")

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await _client(breakers, max_retries=2, http_client=http).request_json(
            "web_search", "GET", "https://search.test/q"
        )
        assert not result.success
        assert "Malformed JSON" in (result.error or "")
        assert calls == 1
