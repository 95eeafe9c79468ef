"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from enrichment.api.exception_handlers import setup_exception_handlers
from enrichment.api.middleware import RequestContextMiddleware
from enrichment.api.routes import router
from enrichment.config import Settings, get_settings
from enrichment.observability.logging import configure_logging
from enrichment.orchestrator import EnrichmentServices, build_services

logger = structlog.get_logger()

API_VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[EnrichmentServices] = None,
) -> FastAPI:
    """
    Build the app. Pass ``services`` to inject pre-wired dependencies (tests);
    otherwise they are built from settings at startup and closed at shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        owned = services is None
        app.state.services = services or build_services(settings)
        logger.info(
            "service_started",
            environment=settings.observability.environment,
            store_backend=settings.store.backend,
            completion_configured=settings.providers.has_completion,
            web_search_configured=settings.providers.has_web_search,
        )
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            logger.info("service_stopped")

    app = FastAPI(title="Company Enrichment Service", version=API_VERSION, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    setup_exception_handlers(app)
    app.include_router(router)
    return app
