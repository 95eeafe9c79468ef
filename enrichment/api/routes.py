"""HTTP routes: enrichment, cache invalidation, health and metrics."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from redis.exceptions import RedisError

from enrichment.api.dependencies import check_payload_size, get_services, require_tenant_auth
from enrichment.api.schemas import EnrichRequestBody
from enrichment.models import AuthContext, EnrichmentRequest
from enrichment.observability import metrics as obs_metrics
from enrichment.orchestrator import EnrichmentServices
from enrichment.validation.url import validate_enrichment_url

logger = structlog.get_logger()

router = APIRouter()


@router.post("/enrich", dependencies=[Depends(check_payload_size)])
async def enrich(
    body: EnrichRequestBody,
    request: Request,
    auth: AuthContext = Depends(require_tenant_auth),
    services: EnrichmentServices = Depends(get_services),
) -> JSONResponse:
    enrichment_request = EnrichmentRequest(
        tenant_id=auth.tenant_id or "",
        urls=body.urls,
        use_cache=body.use_cache,
        force_refresh=body.force_refresh,
        is_privileged=auth.is_privileged,
    )
    response = await services.orchestrator.enrich(enrichment_request, request_id=request.state.request_id)
    return JSONResponse(response.to_wire())


@router.delete("/enrich/cache")
async def invalidate_cache(
    request: Request,
    url: str = Query(...),
    auth: AuthContext = Depends(require_tenant_auth),
    services: EnrichmentServices = Depends(get_services),
) -> JSONResponse:
    identity = validate_enrichment_url(url)
    deleted = await services.orchestrator.cache.invalidate(auth.tenant_id or "", identity.domain)
    return JSONResponse({"success": True, "deleted": deleted, "requestId": request.state.request_id})


@router.get("/health")
async def health(services: EnrichmentServices = Depends(get_services)) -> JSONResponse:
    store = "ok"
    redis = services.stores.redis
    if redis is not None:
        try:
            await redis.ping()
        except RedisError as exc:
            logger.warning("health_store_unreachable", error=str(exc)[:200])
            store = "unreachable"
    providers = {p.name: p.is_configured() for p in services.orchestrator.providers}
    return JSONResponse(
        {
            "status": "ok" if store == "ok" else "degraded",
            "store": store,
            "providers": providers,
        }
    )


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    rendered = obs_metrics.render_latest()
    if rendered is None:
        return Response(status_code=404)
    payload, content_type = rendered
    return Response(content=payload, media_type=content_type)
