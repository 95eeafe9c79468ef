"""
Centralized exception handlers for the FastAPI application.

Every error leaves the service in one shape:

    {"success": false, "error": "<message>", "code": "<machine code>", "requestId": "<id>"}

EnrichmentError subclasses carry their own HTTP status and code. Rate-limit
rejections add Retry-After and X-RateLimit-* headers. Anything unexpected is
logged with its traceback and returned as a generic 500.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from enrichment.errors import EnrichmentError, RateLimitExceededError
from enrichment.models import RateLimitDecision

logger = structlog.get_logger()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


def error_response(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Create a standardized error response."""
    request_id = _request_id(request)
    merged = {"X-Request-Id": request_id} if request_id else {}
    merged.update(headers or {})
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code, "requestId": request_id},
        headers=merged,
    )


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "Retry-After": str(decision.retry_after_seconds()),
        "X-RateLimit-Limit": str(decision.limit_minute),
        "X-RateLimit-Remaining": str(decision.remaining_minute),
        "X-RateLimit-Remaining-Day": str(decision.remaining_day),
        "X-RateLimit-Balance": str(decision.balance),
    }


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI application."""

    @app.exception_handler(EnrichmentError)
    async def enrichment_error_handler(request: Request, exc: EnrichmentError) -> JSONResponse:
        headers: Optional[dict[str, str]] = None
        if isinstance(exc, RateLimitExceededError) and isinstance(exc.decision, RateLimitDecision):
            headers = rate_limit_headers(exc.decision)

        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request_rejected",
            method=request.method,
            path=request.url.path,
            status=exc.status_code,
            code=exc.code,
            error=exc.message,
        )
        return error_response(request, exc.status_code, exc.message, exc.code, headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _first_validation_message(exc)
        logger.warning("request_invalid", method=request.method, path=request.url.path, error=message)
        return error_response(request, status.HTTP_400_BAD_REQUEST, message, "validation_error")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("request_failed", method=request.method, path=request.url.path, error=str(exc)[:200])
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "internal_error",
        )
