"""
Identity service adapter: bearer token + tenant id -> AuthContext.

Authentication is owned by an external service. This module only maps its
answers onto the error taxonomy: 401 -> AuthenticationError, 403/404 ->
AuthorizationError, anything else -> IdentityServiceError. Token values are
never logged.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
import structlog

from enrichment.config import IdentityConfig, get_settings
from enrichment.errors import (
    AuthenticationError,
    AuthorizationError,
    IdentityServiceError,
    PermanentUpstreamError,
    TransientUpstreamError,
)
from enrichment.models import AuthContext
from enrichment.resilience.client import ResilientClient

logger = structlog.get_logger()

IDENTITY_UPSTREAM = "identity"


class IdentityClient(Protocol):
    async def authenticate(self, token: str, tenant_id: str) -> AuthContext: ...

    async def close(self) -> None: ...


class HttpIdentityClient:
    """``GET {IDENTITY_SERVICE_URL}/v1/tenants/{tenant}/membership`` with the caller's token."""

    def __init__(self, resilient: ResilientClient, config: Optional[IdentityConfig] = None) -> None:
        self.config = config or get_settings().identity
        self._resilient = resilient
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def authenticate(self, token: str, tenant_id: str) -> AuthContext:
        if not self.config.service_url:
            raise IdentityServiceError("Identity service is not configured")
        url = f"{self.config.service_url.rstrip('/')}/v1/tenants/{tenant_id}/membership"

        async def _lookup() -> tuple[int, Any]:
            client = await self._get_client()
            response = await client.get(url, headers={"Authorization": f"Bearer {token}"})
            status = response.status_code
            # Rejections are answers, not outages: keep them out of the breaker
            if status in (401, 403, 404):
                return status, None
            if status >= 400:
                err_cls = TransientUpstreamError if status == 429 or status >= 500 else PermanentUpstreamError
                raise err_cls(f"HTTP {status}", status_code=status)
            try:
                return status, response.json()
            except ValueError as exc:
                raise PermanentUpstreamError("Malformed identity response", status_code=status) from exc

        result = await self._resilient.call(IDENTITY_UPSTREAM, _lookup, timeout=self.config.timeout)
        if not result.success or result.data is None:
            logger.error("identity_lookup_failed", error=result.error, short_circuited=result.short_circuited)
            raise IdentityServiceError("Identity service unavailable")

        status, body = result.data
        if status == 401:
            raise AuthenticationError("Invalid or expired token")
        if status in (403, 404):
            raise AuthorizationError("Not a member of this tenant")

        body = body if isinstance(body, dict) else {}
        return AuthContext(
            ok=True,
            user_id=body.get("userId") or body.get("user_id"),
            tenant_id=tenant_id,
            is_privileged=bool(body.get("isPrivileged") or body.get("is_privileged")),
        )

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
