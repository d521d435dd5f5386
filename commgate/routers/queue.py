"""
Operator Queue Router: loopback-only endpoints.

    GET  /gateway/queue                   pending + flagged entries
    POST /gateway/queue/{id}/approve      approve and deliver (blocks on send)
    POST /gateway/queue/{id}/deny         deny
    POST /gateway/filters/reload          rebuild the compiled content filters

The X-Gateway-Key header is ignored here; access is decided by peer address.
"""

import logging

from fastapi import APIRouter, Depends

from commgate.config import settings
from commgate.core.async_utils import run_sync
from commgate.core.local_only_guard import require_local_client
from commgate.core.timeutil import isoformat_utc
from commgate.dependencies import get_approval_service, get_filter_matcher
from commgate.models.gateway import (
    ActionStatusView,
    Envelope,
    FilterReloadView,
    QueueItemView,
    QueueListView,
)
from commgate.services import queue_store
from commgate.services.approval_service import ApprovalOutcome, ApprovalService
from commgate.services.content_filter import ContentFilterMatcher

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/gateway",
    tags=["Operator"],
    dependencies=[Depends(require_local_client)],
)


def _outcome_view(outcome: ApprovalOutcome) -> ActionStatusView:
    return ActionStatusView(
        action_id=outcome.action_id,
        status=outcome.status,
        sent_at=outcome.sent_at,
        error_message=outcome.error_message,
    )


def _list_queue() -> QueueListView:
    items = [
        QueueItemView(
            id=entry.id,
            agent_name=agent_name,
            channel=entry.channel,
            recipient_address=entry.recipient_address,
            recipient_name=entry.recipient_name,
            subject=entry.subject,
            body=entry.body,
            priority=entry.priority,
            status=entry.status,
            context=entry.context,
            created_at=isoformat_utc(entry.created_at),
        )
        for entry, agent_name in queue_store.list_pending()
    ]
    return QueueListView(entries=items, count=len(items))


@router.get("/queue", response_model=Envelope[QueueListView])
async def list_queue():
    return Envelope(data=await run_sync(_list_queue))


@router.post(
    "/queue/{action_id}/approve",
    response_model=Envelope[ActionStatusView],
    response_model_exclude_none=True,
)
async def approve_action(
    action_id: str,
    service: ApprovalService = Depends(get_approval_service),
):
    outcome = await run_sync(service.approve, action_id, timeout=settings.delivery_timeout_s)
    return Envelope(data=_outcome_view(outcome))


@router.post(
    "/queue/{action_id}/deny",
    response_model=Envelope[ActionStatusView],
    response_model_exclude_none=True,
)
async def deny_action(
    action_id: str,
    service: ApprovalService = Depends(get_approval_service),
):
    outcome = await run_sync(service.deny, action_id)
    return Envelope(data=_outcome_view(outcome))


@router.post("/filters/reload", response_model=Envelope[FilterReloadView])
async def reload_filters(matcher: ContentFilterMatcher = Depends(get_filter_matcher)):
    filter_set = await run_sync(matcher.reload)
    return Envelope(data=FilterReloadView(active_filters=len(filter_set), skipped_filters=filter_set.skipped))
