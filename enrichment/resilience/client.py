"""
Resilient upstream calls: timeout, bounded retries, circuit breaker.

Every outbound call in the pipeline goes through ResilientClient.call, which
never raises for upstream faults. Callers get a CallResult that says whether
the call worked, why not, and how many retries were actually spent.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from enrichment.errors import PermanentUpstreamError, TransientUpstreamError, UpstreamError
from enrichment.observability import metrics as obs_metrics
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry

logger = structlog.get_logger()
T = TypeVar("T")


@dataclass
class CallResult(Generic[T]):
    """Typed outcome of a resilient call."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    retry_count: int = 0
    status_code: Optional[int] = None
    short_circuited: bool = False


def _status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by httpx or OpenAI-style SDK exceptions, if any."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def classify_error(exc: BaseException) -> type[UpstreamError]:
    """Classify an exception as Transient or Permanent for the retry policy."""
    if isinstance(exc, UpstreamError):
        return type(exc)
    status = _status_code_of(exc)
    if status is not None:
        return TransientUpstreamError if status == 429 or status >= 500 else PermanentUpstreamError
    if isinstance(exc, (asyncio.TimeoutError, httpx.TransportError)):
        return TransientUpstreamError
    if isinstance(exc, ValueError):
        # includes json.JSONDecodeError
        return PermanentUpstreamError
    msg = str(exc).lower()
    if "rate" in msg or "429" in msg or "503" in msg or "500" in msg:
        return TransientUpstreamError
    if "timeout" in msg or "timed out" in msg or "connection" in msg or "reset" in msg:
        return TransientUpstreamError
    if "401" in msg or "403" in msg or "invalid" in msg or "api key" in msg:
        return PermanentUpstreamError
    # Default: treat unknown as transient (retry within the budget)
    return TransientUpstreamError


class ResilientClient:
    """Provider-agnostic call wrapper shared by every upstream adapter."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        timeout: float = 15.0,
        max_retries: int = 2,
        base_delay: float = 0.5,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.breakers = breakers
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _attempt(self, operation: Callable[[], Awaitable[T]], timeout: float) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except UpstreamError:
            raise
        except asyncio.TimeoutError as exc:
            raise TransientUpstreamError("Request timed out") from exc
        except Exception as exc:
            err_cls = classify_error(exc)
            raise err_cls(str(exc) or type(exc).__name__, status_code=_status_code_of(exc)) from exc

    async def call(
        self,
        upstream: str,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> CallResult[T]:
        """
        Run ``operation`` with a hard timeout and bounded retries.

        Transient failures (timeout, connection, 429, 5xx) are retried up to
        ``max_retries`` extra times with exponential backoff. A permanent
        failure or an exhausted budget records a breaker failure. An open
        breaker returns immediately without calling ``operation``.
        """
        if self.breakers.is_open(upstream):
            logger.warning("upstream_short_circuited", upstream=upstream)
            obs_metrics.record_upstream_call(upstream, "short_circuited", 0.0)
            return CallResult(
                success=False,
                error=f"Circuit breaker open for {upstream}",
                short_circuited=True,
            )

        call_timeout = timeout if timeout is not None else self.timeout
        retries = self.max_retries if max_retries is None else max_retries
        attempts = 0
        start = time.perf_counter()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2, min=0),
            retry=retry_if_exception_type(TransientUpstreamError),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "upstream_retry",
                upstream=upstream,
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception()) if rs.outcome else "unknown",
            ),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    data = await self._attempt(operation, call_timeout)
        except UpstreamError as exc:
            self.breakers.record_failure(upstream)
            elapsed = time.perf_counter() - start
            logger.warning(
                "upstream_call_failed",
                upstream=upstream,
                error=str(exc)[:200],
                status_code=exc.status_code,
                retry_count=max(0, attempts - 1),
                duration_ms=round(elapsed * 1000, 1),
            )
            obs_metrics.record_upstream_call(upstream, "failure", elapsed)
            return CallResult(
                success=False,
                error=str(exc),
                retry_count=max(0, attempts - 1),
                status_code=exc.status_code,
            )

        self.breakers.record_success(upstream)
        obs_metrics.record_upstream_call(upstream, "success", time.perf_counter() - start)
        return CallResult(success=True, data=data, retry_count=max(0, attempts - 1))

    async def request_json(
        self,
        upstream: str,
        method: str,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> CallResult[Any]:
        """HTTP request returning decoded JSON, with the same resilience guarantees as call()."""

        async def _do() -> Any:
            client = await self._get_client()
            response = await client.request(method, url, headers=headers, params=params, json=json_body)
            status = response.status_code
            if status >= 400:
                err_cls = TransientUpstreamError if status == 429 or status >= 500 else PermanentUpstreamError
                raise err_cls(f"HTTP {status}", status_code=status)
            try:
                return response.json()
            except ValueError as exc:
                raise PermanentUpstreamError("Malformed JSON response", status_code=status) from exc

        return await self.call(upstream, _do, timeout=timeout, max_retries=max_retries)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
