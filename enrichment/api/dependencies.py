"""FastAPI dependencies: service container and authenticated tenant context."""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header, Request

from enrichment.errors import AuthenticationError, ValidationError
from enrichment.models import AuthContext
from enrichment.observability.logging import bind_request_context
from enrichment.orchestrator import EnrichmentServices

MAX_PAYLOAD_SIZE = 10_000


def get_services(request: Request) -> EnrichmentServices:
    return request.app.state.services


def check_payload_size(request: Request) -> None:
    """Reject bodies whose declared Content-Length exceeds MAX_PAYLOAD_SIZE bytes."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > MAX_PAYLOAD_SIZE:
        raise ValidationError(
            f"Request body exceeds maximum size of {MAX_PAYLOAD_SIZE} bytes",
            code="payload_too_large",
        )


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header")
    return token.strip()


def _tenant_id(raw: Optional[str]) -> str:
    if not raw or not raw.strip():
        raise ValidationError("X-Tenant-Id header is required", code="missing_tenant")
    try:
        return str(uuid.UUID(raw.strip()))
    except ValueError as exc:
        raise ValidationError("Invalid X-Tenant-Id format", code="invalid_tenant") from exc


async def require_tenant_auth(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
    services: EnrichmentServices = Depends(get_services),
) -> AuthContext:
    """Resolve the bearer token against the tenant; 401/403 surface as EnrichmentErrors."""
    token = _bearer_token(authorization)
    tenant_id = _tenant_id(x_tenant_id)
    context = await services.identity.authenticate(token, tenant_id)
    if not context.ok:
        raise AuthenticationError("Invalid or expired token")
    context = context.model_copy(update={"tenant_id": tenant_id})
    bind_request_context(request.state.request_id, tenant_id=tenant_id, user_id=context.user_id)
    return context
