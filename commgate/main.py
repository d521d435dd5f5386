"""
Communication Gateway HTTP Server
=================================

FastAPI application exposing the agent endpoints (send, poll, health) and
the loopback-only operator endpoints (queue, approve, deny, filter reload).

Services are built once per app by ``create_app`` and stored on
``app.state``; pass replacements (fake senders, a different consent
lookup, a supervisor) to the factory or override the dependencies.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from commgate import __version__
from commgate.config import settings
from commgate.core.database import close_db, init_db
from commgate.core.errors import GatewayError
from commgate.core.errors.middleware import error_body, gateway_error_handler, request_validation_handler
from commgate.core.errors.registry import error_registry
from commgate.core.log_middleware import CorrelationMiddleware
from commgate.core.structured_logging import setup_logging
from commgate.routers import gateway, queue
from commgate.services.approval_service import ApprovalService
from commgate.services.consent import ConsentLookup, SqlConsentLookup
from commgate.services.content_filter import ContentFilterMatcher
from commgate.services.delivery import DeliveryExecutor
from commgate.services.policy_pipeline import PolicyPipeline
from commgate.services.senders import build_senders
from commgate.services.webhook_notifier import WebhookNotifier

if TYPE_CHECKING:
    from commgate.daemon import DaemonSupervisor

setup_logging(log_dir=str(settings.log_directory), log_level=settings.log_level.upper())

logger = logging.getLogger(__name__)

API_TITLE = "Communication Gateway"
API_DESCRIPTION = "Human-approved outbound email, SMS and iMessage for automated agents."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: registry, schema, filters, pid file. Shutdown: flush webhooks, release."""
    logger.info("Starting Communication Gateway v%s on %s:%s", __version__, settings.host, settings.port)

    if not error_registry.loaded:
        error_registry.load()
    init_db()
    app.state.matcher.reload()

    supervisor: Optional["DaemonSupervisor"] = app.state.supervisor
    if supervisor is not None:
        supervisor.register_current_process()

    app.state.started_at = time.time()
    yield

    logger.info("Shutting down Communication Gateway")
    app.state.notifier.close(wait=True)
    if supervisor is not None:
        supervisor.release_current_process()
    close_db()


def create_app(
    senders=None,
    consent: Optional[ConsentLookup] = None,
    notifier: Optional[WebhookNotifier] = None,
    supervisor: Optional["DaemonSupervisor"] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )

    matcher = ContentFilterMatcher()
    notifier = notifier or WebhookNotifier(
        timeout=settings.webhook_timeout_s, max_workers=settings.webhook_max_workers,
    )
    executor = DeliveryExecutor(senders if senders is not None else build_senders(settings))

    app.state.matcher = matcher
    app.state.notifier = notifier
    app.state.supervisor = supervisor
    app.state.pipeline = PolicyPipeline(matcher=matcher, consent=consent or SqlConsentLookup())
    app.state.approval_service = ApprovalService(executor=executor, notifier=notifier)
    app.state.started_at = time.time()

    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.exception_handler(TimeoutError)
    async def _timeout_handler(request: Request, exc: TimeoutError):
        logger.error("Timeout on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=504, content=error_body("timeout", "The operation timed out."))

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body("internal_error", "An unexpected error occurred."),
        )

    app.include_router(gateway.router)
    app.include_router(queue.router)

    return app


app = create_app()
