"""
Delivery Executor
=================

Hands an approved queue entry to the sender for its channel, waits for the
result, and records it: sent (with sent_at) or failed (with a sanitized
error message). Runs inline inside the approval operation; there is no
background retry.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from commgate.core.errors import DeliveryFailed
from commgate.core.redaction import safe_error_category, sanitize_error_message
from commgate.models.queue import ActionStatus, QueueEntry
from commgate.services import queue_store
from commgate.services.senders import Sender, SendError

logger = logging.getLogger(__name__)

_OUTCOME_ATTEMPTS = 3
_OUTCOME_BACKOFF_S = 0.2


@dataclass(frozen=True)
class DeliveryResult:
    action_id: str
    status: str
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.SENT.value


class DeliveryExecutor:
    def __init__(self, senders: Optional[Mapping[str, Sender]] = None):
        self.senders: Dict[str, Sender] = dict(senders or {})

    def _dispatch(self, entry: QueueEntry) -> None:
        sender = self.senders.get(entry.channel)
        if sender is None:
            raise DeliveryFailed(message=f"no sender configured for channel '{entry.channel}'")
        try:
            sender.send(entry.recipient_address, entry.subject, entry.body)
        except SendError as exc:
            raise DeliveryFailed(message=str(exc) or "send failed", detail=repr(exc)) from exc
        except Exception as exc:
            # Provider internals stay in the log; the entry gets a category
            logger.exception("Sender for %s raised on action %s", entry.channel, entry.id)
            raise DeliveryFailed(
                message=f"send failed ({safe_error_category(exc)})", detail=repr(exc),
            ) from exc

    def _record(self, action_id: str, sent: bool, error_message: Optional[str] = None) -> None:
        """Persist the terminal status, retrying transient database errors."""
        for attempt in range(1, _OUTCOME_ATTEMPTS + 1):
            try:
                queue_store.record_outcome(action_id, sent=sent, error_message=error_message)
                return
            except SQLAlchemyError as exc:
                if attempt == _OUTCOME_ATTEMPTS:
                    logger.error(
                        "Giving up recording %s for %s after %d attempts",
                        "sent" if sent else "failed", action_id, attempt,
                    )
                    raise
                logger.warning(
                    "Recording outcome for %s failed (%d/%d): %s",
                    action_id, attempt, _OUTCOME_ATTEMPTS, safe_error_category(exc),
                )
                time.sleep(_OUTCOME_BACKOFF_S * attempt)

    def _failed(self, entry: QueueEntry, message: str) -> DeliveryResult:
        message = sanitize_error_message(message)
        self._record(entry.id, sent=False, error_message=message)
        logger.warning("Delivery of %s via %s failed: %s", entry.id, entry.channel, message)
        return DeliveryResult(entry.id, ActionStatus.FAILED.value, message)

    def deliver(self, entry: QueueEntry) -> DeliveryResult:
        """Send an approved entry and persist the outcome.

        Every path ends in a sent or failed write; the entry never stays
        approved unless the database itself refuses the write.
        """
        try:
            self._dispatch(entry)
        except DeliveryFailed as exc:
            return self._failed(entry, exc.message or "send failed")
        except Exception as exc:
            logger.exception("Delivery of %s aborted", entry.id)
            return self._failed(entry, f"send failed ({safe_error_category(exc)})")

        self._record(entry.id, sent=True)
        logger.info("Delivered %s via %s", entry.id, entry.channel)
        return DeliveryResult(entry.id, ActionStatus.SENT.value)
