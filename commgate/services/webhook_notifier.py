"""
Webhook Notifier
================

Best-effort callback to the agent's configured URL when an action reaches
a terminal status (sent, denied, failed).

One POST per transition, 10 s timeout, no retry. Posts run on a small
thread pool so the approve/deny caller never waits on the agent's server.
Failures are logged and dropped; they never touch the queue entry.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

import httpx

from commgate import __version__
from commgate.core.errors import WebhookDeliveryFailed
from commgate.core.timeutil import isoformat_utc
from commgate.models.queue import TERMINAL_STATUSES, QueueEntry

logger = logging.getLogger(__name__)

USER_AGENT = f"commgate/{__version__}"


def build_payload(entry: QueueEntry) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "action_id": entry.id,
        "status": entry.status,
        "recipient": entry.recipient_address,
        "channel": entry.channel,
        "sent_at": isoformat_utc(entry.sent_at),
        "error_message": entry.error_message,
    }
    return {k: v for k, v in payload.items() if v is not None}


class WebhookNotifier:
    def __init__(
        self,
        timeout: float = 10.0,
        max_workers: int = 4,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook")

    def post(self, url: str, payload: Dict[str, Any]) -> None:
        """POST synchronously. Raises WebhookDeliveryFailed on any failure."""
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, json=payload, headers={"User-Agent": USER_AGENT})
        except httpx.HTTPError as exc:
            raise WebhookDeliveryFailed(detail=f"{type(exc).__name__} posting to webhook") from exc
        if not response.is_success:
            raise WebhookDeliveryFailed(detail=f"webhook returned HTTP {response.status_code}")

    def _post_logged(self, url: str, payload: Dict[str, Any]) -> bool:
        try:
            self.post(url, payload)
        except WebhookDeliveryFailed as exc:
            logger.warning("Webhook for action %s failed: %s", payload.get("action_id"), exc.detail)
            return False
        logger.info("Webhook delivered for action %s (%s)", payload.get("action_id"), payload.get("status"))
        return True

    def notify(self, entry: QueueEntry, webhook_url: Optional[str]) -> Optional["Future[bool]"]:
        """Schedule a POST for a terminal entry. Returns the future, or None if nothing was sent."""
        if not webhook_url or entry.status not in TERMINAL_STATUSES:
            return None
        payload = build_payload(entry)
        try:
            return self._pool.submit(self._post_logged, webhook_url, payload)
        except RuntimeError:
            # Pool already shut down (process exiting)
            logger.warning("Webhook for action %s dropped: notifier closed", entry.id)
            return None

    def close(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
