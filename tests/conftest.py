"""Shared pytest fixtures for enrichment service tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
from langchain_core.messages import AIMessage

from enrichment.config import (
    CacheConfig,
    IdentityConfig,
    LimitsConfig,
    ObservabilityConfig,
    ProviderConfig,
    ResilienceConfig,
    Settings,
    StoreConfig,
)
from enrichment.llm_client import LLMClient, LLMTask
from enrichment.models import AuthContext
from enrichment.orchestrator import EnrichmentServices, build_services
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.resilience.client import ResilientClient

TENANT_ID = "3f8a2c1e-5b7d-4e9f-a012-3456789abcde"
OTHER_TENANT_ID = "9b1d7e20-4c3a-4f5b-8e6d-0a1b2c3d4e5f"

RESEARCH_TEXT = (
    "Acme is a payments infrastructure company headquartered in San Francisco. "
    "Sources: https://acme.com/about, https://www.linkedin.com/company/acme."
)

EXTRACTION_JSON = """```json
{
  "description": "Acme builds payments infrastructure for internet businesses.",
  "industry": "Fintech",
  "location": "San Francisco, CA",
  "foundedYear": "2010",
  "companySize": "1,000-10,000 employees",
  "keyPeople": ["Jane Doe (CEO)"],
  "productSummary": "Payments APIs",
}
```"""

BRAVE_PAYLOAD: dict[str, Any] = {
    "web": {
        "results": [
            {
                "title": "Acme - Payments infrastructure",
                "url": "https://acme.com/about",
                "description": (
                    "Acme builds payments infrastructure for internet businesses "
                    "of every size, headquartered in San Francisco."
                ),
                "extra_snippets": ["Founded in 2010, Acme has 8,000 employees."],
            },
            {
                "title": "Acme | LinkedIn",
                "url": "https://www.linkedin.com/company/acme",
                "description": "Acme | 8,000 followers on LinkedIn.",
            },
        ]
    }
}


class FakeChatModel:
    """
    Stands in for a LangChain chat model. Each ainvoke consumes the next
    scripted item (str -> AIMessage, exception -> raised); the last item repeats.
    A ``delay`` makes every call hang that long first.
    """

    def __init__(self, *responses: Any, delay: float = 0.0) -> None:
        self.responses = list(responses)
        self.delay = delay
        self.calls = 0
        self.bound: dict[str, Any] = {}

    def bind(self, **kwargs: Any) -> FakeChatModel:
        self.bound = kwargs
        return self

    async def ainvoke(self, messages: Any) -> AIMessage:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return AIMessage(content=item)


def make_settings(
    *,
    completion_key: str = "",
    search_key: str = "",
    per_minute: int = 10,
    per_day: int = 100,
    balance: int = 100,
    max_retries: int = 1,
    timeout: float = 15.0,
    environment: str = "test",
) -> Settings:
    """Settings with the in-memory store backend and zero retry delay."""
    return Settings(
        providers=ProviderConfig(GROQ_API_KEY=completion_key, BRAVE_SEARCH_API_KEY=search_key),
        resilience=ResilienceConfig(
            UPSTREAM_TIMEOUT_SECONDS=timeout,
            UPSTREAM_RETRY_BASE_DELAY=0,
            UPSTREAM_MAX_RETRIES=max_retries,
        ),
        limits=LimitsConfig(
            RATE_LIMIT_PER_MINUTE=per_minute,
            RATE_LIMIT_PER_DAY=per_day,
            RATE_LIMIT_INITIAL_BALANCE=balance,
        ),
        cache=CacheConfig(),
        store=StoreConfig(STORE_BACKEND="memory"),
        identity=IdentityConfig(IDENTITY_SERVICE_URL="http://identity.test"),
        observability=ObservabilityConfig(ENVIRONMENT=environment, LOG_JSON=False),
    )


def brave_handler(payload: Optional[dict[str, Any]] = None, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    """MockTransport handler that counts calls on ``handler.calls``."""

    def handler(request: httpx.Request) -> httpx.Response:
        handler.calls += 1  # type: ignore[attr-defined]
        handler.last_request = request  # type: ignore[attr-defined]
        if status_code >= 400:
            return httpx.Response(status_code, json={"error": "upstream"})
        return httpx.Response(200, json=payload if payload is not None else BRAVE_PAYLOAD)

    handler.calls = 0  # type: ignore[attr-defined]
    handler.last_request = None  # type: ignore[attr-defined]
    return handler


def make_identity(context: Optional[AuthContext] = None) -> AsyncMock:
    identity = AsyncMock()
    identity.authenticate.return_value = context or AuthContext(
        ok=True,
        user_id="user-0000-1111-2222",
        tenant_id=TENANT_ID,
    )
    return identity


def make_services(
    settings: Settings,
    *,
    research: Optional[FakeChatModel] = None,
    extraction: Optional[FakeChatModel] = None,
    search: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    breakers: Optional[CircuitBreakerRegistry] = None,
    identity: Optional[AsyncMock] = None,
) -> EnrichmentServices:
    """
    Wire real services around fakes: scripted chat models for the completion
    endpoint and an httpx MockTransport for web search.
    """
    breakers = breakers or CircuitBreakerRegistry(
        failure_threshold=settings.resilience.breaker_failure_threshold,
        cooldown_seconds=settings.resilience.breaker_cooldown_seconds,
    )
    transport = httpx.MockTransport(search or brave_handler())
    resilient = ResilientClient(
        breakers,
        timeout=settings.resilience.request_timeout,
        max_retries=settings.resilience.max_retries,
        base_delay=0,
        http_client=httpx.AsyncClient(transport=transport),
    )
    models: dict[LLMTask, Any] = {}
    if research is not None:
        models[LLMTask.RESEARCH] = research
    if extraction is not None:
        models[LLMTask.EXTRACTION] = extraction
    llm = LLMClient(resilient, settings.providers, settings.resilience, models=models)
    return build_services(settings, identity=identity or make_identity(), llm=llm, resilient=resilient)


@pytest.fixture
def settings() -> Settings:
    return make_settings(completion_key="gsk_test_key_0001", search_key="brave_test_key")


@pytest.fixture
def breakers() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=5, cooldown_seconds=30.0)


def hanging_handler(delay: float = 1.0) -> Callable[[httpx.Request], Any]:
    """Async MockTransport handler that sleeps past any small timeout; counts calls."""

    async def handler(request: httpx.Request) -> httpx.Response:
        handler.calls += 1  # type: ignore[attr-defined]
        await asyncio.sleep(delay)
        return httpx.Response(200, json=BRAVE_PAYLOAD)

    handler.calls = 0  # type: ignore[attr-defined]
    return handler
