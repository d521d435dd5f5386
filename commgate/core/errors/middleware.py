"""
FastAPI exception handlers for GatewayError and framework validation errors.

Looks the code up in the registry and returns the gateway error envelope:

    {"success": false, "error": <code>, "message": <safe text>, ...context}

Unknown codes get a safe 500 fallback.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from commgate.core.errors import GatewayError
from commgate.core.errors.registry import error_registry

logger = logging.getLogger(__name__)


def error_body(code: str, message: str, context: dict | None = None) -> dict:
    body = {"success": False, "error": code, "message": message}
    for key, value in (context or {}).items():
        body.setdefault(key, value)
    return body


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Convert GatewayError into a structured JSON response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.detail},
        )
        return JSONResponse(
            status_code=500,
            content=error_body("internal_error", "An unexpected error occurred."),
        )

    log_extra = {
        "error.code": exc.code,
        "error.kind": type(exc).__name__,
        "error.message": exc.detail,
        "http.path": request.url.path,
        **{f"error.ctx.{k}": v for k, v in exc.context.items()},
    }
    _severity_to_log_fn(entry.severity)(entry.title, extra=log_extra)

    headers = None
    if "retry_after_seconds" in exc.context:
        headers = {"Retry-After": str(exc.context["retry_after_seconds"])}

    return JSONResponse(
        status_code=entry.http_status,
        content=error_body(exc.code, exc.message or entry.safe_message, exc.context),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Framework-level validation (path/query params) uses the bad_request envelope."""
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("bad_request", "; ".join(problems) or "Malformed request"),
    )


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
