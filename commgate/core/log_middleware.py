"""Request context for gateway logs: ids in, one request_completed line out."""
from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from commgate.core.structured_logging import log_context

logger = structlog.get_logger(__name__)


def _surface(path: str) -> str:
    if path.startswith("/gateway/queue") or path.startswith("/gateway/filters"):
        return "operator"
    if path.startswith("/gateway/"):
        return "agent"
    return "other"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Bind request_id / correlation_id for the request and echo them back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        corr_id = request.headers.get("x-correlation-id") or req_id
        start = time.perf_counter()

        with log_context(request_id=req_id, correlation_id=corr_id):
            response = await call_next(request)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                surface=_surface(request.url.path),
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )

        response.headers["x-request-id"] = req_id
        response.headers["x-correlation-id"] = corr_id
        return response
