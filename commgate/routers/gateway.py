"""
Agent Gateway Router: /gateway/send, /gateway/actions/{id}, /gateway/health.

Auth via the X-Gateway-Key header (send, poll). Errors are raised as
GatewayError subclasses and rendered by the registry exception handler:

    {"success": false, "error": "<code>", "message": "...", ...context}
"""

import json
import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request

from commgate import __version__
from commgate.core.async_utils import run_sync
from commgate.core.errors import NotFound
from commgate.core.timeutil import isoformat_utc
from commgate.dependencies import get_policy_pipeline, get_started_at
from commgate.models.gateway import (
    ActionStatusView,
    Envelope,
    HealthView,
    SendResult,
)
from commgate.services import key_store, queue_store
from commgate.services.policy_pipeline import PolicyPipeline

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/gateway",
    tags=["Gateway"],
)


async def _read_json(request: Request) -> Any:
    """Raw JSON body (None if absent or unparseable). Shape validation runs
    inside the pipeline, after authentication."""
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


# ------------------------------------------------------------------
# Send
# ------------------------------------------------------------------

@router.post(
    "/send",
    response_model=Envelope[SendResult],
    summary="Queue a message for human approval",
)
async def send_message(
    request: Request,
    x_gateway_key: Optional[str] = Header(None),
    pipeline: PolicyPipeline = Depends(get_policy_pipeline),
):
    payload = await _read_json(request)
    outcome = await run_sync(pipeline.submit, x_gateway_key, payload)
    return Envelope(data=SendResult(action_id=outcome.action_id, status=outcome.status))


# ------------------------------------------------------------------
# Poll
# ------------------------------------------------------------------

def _poll(raw_key: Optional[str], action_id: str) -> ActionStatusView:
    api_key = key_store.authenticate(raw_key)
    entry = queue_store.get_entry(action_id)
    # Entries of other keys are indistinguishable from missing ones
    if entry is None or entry.key_id != api_key.id:
        raise NotFound(detail=f"action {action_id} for key {api_key.key_prefix}")
    return ActionStatusView(
        action_id=entry.id,
        status=entry.status,
        sent_at=isoformat_utc(entry.sent_at),
        error_message=entry.error_message,
    )


@router.get(
    "/actions/{action_id}",
    response_model=Envelope[ActionStatusView],
    response_model_exclude_none=True,
    summary="Poll the status of a queued action",
)
async def get_action(action_id: str, x_gateway_key: Optional[str] = Header(None)):
    view = await run_sync(_poll, x_gateway_key, action_id)
    return Envelope(data=view)


# ------------------------------------------------------------------
# Health (no auth)
# ------------------------------------------------------------------

@router.get(
    "/health",
    response_model=Envelope[HealthView],
    summary="Liveness and pending count",
)
async def health(started_at: float = Depends(get_started_at)):
    pending = await run_sync(queue_store.pending_count)
    return Envelope(
        data=HealthView(
            status="ok",
            uptime_secs=int(time.time() - started_at),
            pending_count=pending,
            version=__version__,
        )
    )
