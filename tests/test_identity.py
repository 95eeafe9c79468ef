"""Tests for the identity service adapter."""

import httpx
import pytest

from enrichment.config import IdentityConfig
from enrichment.errors import AuthenticationError, AuthorizationError, IdentityServiceError
from enrichment.identity import IDENTITY_UPSTREAM, HttpIdentityClient
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.resilience.client import ResilientClient

from conftest import TENANT_ID


def _identity(handler, breakers: CircuitBreakerRegistry, url: str = "http://identity.test") -> HttpIdentityClient:  # type: ignore[no-untyped-def]
    resilient = ResilientClient(breakers, max_retries=1, base_delay=0)
    client = HttpIdentityClient(resilient, IdentityConfig(IDENTITY_SERVICE_URL=url))
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


@pytest.mark.asyncio
async def test_member_resolves_context(breakers: CircuitBreakerRegistry) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"userId": "user-42", "isPrivileged": True})

    context = await _identity(handler, breakers).authenticate("tok", TENANT_ID)
    assert context.ok
    assert context.user_id == "user-42"
    assert context.tenant_id == TENANT_ID
    assert context.is_privileged
    assert seen[0].url.path == f"/v1/tenants/{TENANT_ID}/membership"
    assert seen[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error", [(401, AuthenticationError), (403, AuthorizationError), (404, AuthorizationError)])
async def test_rejections_map_to_errors_without_tripping_breaker(
    status: int, error: type, breakers: CircuitBreakerRegistry
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={})

    with pytest.raises(error):
        await _identity(handler, breakers).authenticate("tok", TENANT_ID)
    assert breakers.snapshot(IDENTITY_UPSTREAM).failures == 0


@pytest.mark.asyncio
async def test_outage_is_identity_service_error(breakers: CircuitBreakerRegistry) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502)

    with pytest.raises(IdentityServiceError):
        await _identity(handler, breakers).authenticate("tok", TENANT_ID)
    assert calls == 2
    assert breakers.snapshot(IDENTITY_UPSTREAM).failures == 1


@pytest.mark.asyncio
async def test_unconfigured_service(breakers: CircuitBreakerRegistry) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(IdentityServiceError, match="not configured"):
        await _identity(handler, breakers, url="").authenticate("tok", TENANT_ID)
