"""
Approval Service: the one approve/deny primitive.

Both operator surfaces (HTTP local endpoints and the interactive console)
call into this class; neither writes queue status on its own. Approval is
claim + deliver + notify in one call, so the operator sees the send result
immediately. Losing the claim raises AlreadyResolved and never reaches a
sender.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from commgate.core.errors import AlreadyResolved, NotFound
from commgate.core.structured_logging import log_context
from commgate.core.timeutil import isoformat_utc
from commgate.models.queue import ActionStatus, QueueEntry
from commgate.services import queue_store
from commgate.services.delivery import DeliveryExecutor
from commgate.services.webhook_notifier import WebhookNotifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalOutcome:
    action_id: str
    status: str
    sent_at: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "ApprovalOutcome":
        return cls(
            action_id=entry.id,
            status=entry.status,
            sent_at=isoformat_utc(entry.sent_at),
            error_message=entry.error_message,
        )


class ApprovalService:
    def __init__(self, executor: DeliveryExecutor, notifier: WebhookNotifier):
        self.executor = executor
        self.notifier = notifier

    def _claim(self, action_id: str, target: str) -> None:
        if queue_store.get_entry(action_id) is None:
            raise NotFound(detail=f"action {action_id}")
        if not queue_store.claim(action_id, target):
            current = queue_store.get_entry(action_id)
            status = current.status if current else None
            raise AlreadyResolved(
                message=f"Action already resolved (status: {status})",
                context={"action_id": action_id, "status": status},
            )

    def _finish(self, action_id: str) -> ApprovalOutcome:
        found = queue_store.get_entry_with_key(action_id)
        if found is None:
            raise NotFound(detail=f"action {action_id} vanished after transition")
        entry, api_key = found
        self.notifier.notify(entry, api_key.webhook_url)
        return ApprovalOutcome.from_entry(entry)

    def approve(self, action_id: str) -> ApprovalOutcome:
        """Claim, deliver and record. Raises NotFound / AlreadyResolved."""
        with log_context(action_id=action_id):
            self._claim(action_id, ActionStatus.APPROVED.value)
            entry = queue_store.get_entry(action_id)
            result = self.executor.deliver(entry)
            logger.info("Approved %s -> %s", action_id, result.status)
            return self._finish(action_id)

    def deny(self, action_id: str) -> ApprovalOutcome:
        with log_context(action_id=action_id):
            self._claim(action_id, ActionStatus.DENIED.value)
            logger.info("Denied %s", action_id)
            return self._finish(action_id)
