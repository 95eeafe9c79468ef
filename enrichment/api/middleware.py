"""Request correlation middleware: X-Request-Id in, X-Request-Id out, bound into structlog."""

from __future__ import annotations

import re
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from enrichment.observability.logging import bind_request_context, clear_request_context, generate_request_id

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-Id"
# Incoming ids are echoed into headers and logs; keep them short and inert
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Honours an incoming X-Request-Id (when it looks sane) or generates one,
    stores it on request.state, binds it for logging and echoes it back.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        request_id = incoming if incoming and _SAFE_REQUEST_ID.match(incoming) else generate_request_id()
        request.state.request_id = request_id

        clear_request_context()
        bind_request_context(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
            )
            return response
        finally:
            clear_request_context()
