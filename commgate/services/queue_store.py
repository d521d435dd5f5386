"""
Queue Store
===========

Persistence for queued actions. Every status change after insert goes
through a conditional UPDATE guarded on the current status:

    claim():            pending|flagged -> approved|denied
    record_outcome():   approved        -> sent|failed

The guard makes the database the arbiter between the HTTP local endpoints
and the approval console (separate processes). Whoever's UPDATE matches
one row owns the transition; everyone else sees rowcount 0.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, update
from sqlmodel import select

from commgate.core.database import get_engine, get_session_context, sqlite_retry
from commgate.core.timeutil import as_utc, utcnow
from commgate.models.api_key import GatewayApiKey
from commgate.models.queue import (
    PRIORITY_RANK,
    UNRESOLVED_STATUSES,
    ActionStatus,
    QueueEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def insert_entry(
    key_id: str,
    channel: str,
    recipient_address: str,
    body: str,
    status: str,
    subject: Optional[str] = None,
    recipient_name: Optional[str] = None,
    priority: str = "normal",
    context: Optional[Dict[str, Any]] = None,
) -> QueueEntry:
    if status not in UNRESOLVED_STATUSES:
        raise ValueError(f"New entries start as pending or flagged, not {status!r}")
    entry = QueueEntry(
        id=str(uuid.uuid4()),
        key_id=key_id,
        channel=channel,
        recipient_address=recipient_address,
        recipient_name=recipient_name,
        subject=subject,
        body=body,
        priority=priority,
        status=status,
        context_json=json.dumps(context) if context else None,
    )

    def _insert() -> QueueEntry:
        with get_session_context() as session:
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    return sqlite_retry(_insert)


def get_entry(action_id: str) -> Optional[QueueEntry]:
    with get_session_context() as session:
        return session.get(QueueEntry, action_id)


def get_entry_with_key(action_id: str) -> Optional[Tuple[QueueEntry, GatewayApiKey]]:
    with get_session_context() as session:
        row = session.exec(
            select(QueueEntry, GatewayApiKey)
            .join(GatewayApiKey, GatewayApiKey.id == QueueEntry.key_id)
            .where(QueueEntry.id == action_id)
        ).first()
        return (row[0], row[1]) if row else None


def _priority_order():
    return case(PRIORITY_RANK, value=QueueEntry.priority, else_=len(PRIORITY_RANK))


def list_pending() -> List[Tuple[QueueEntry, str]]:
    """Unresolved entries with their agent name: flagged first, then priority, oldest first."""
    flagged_first = case((QueueEntry.status == ActionStatus.FLAGGED.value, 0), else_=1)
    with get_session_context() as session:
        rows = session.exec(
            select(QueueEntry, GatewayApiKey.name)
            .join(GatewayApiKey, GatewayApiKey.id == QueueEntry.key_id)
            .where(QueueEntry.status.in_(UNRESOLVED_STATUSES))  # type: ignore[attr-defined]
            .order_by(flagged_first, _priority_order(), QueueEntry.created_at)
        ).all()
        return [(entry, name) for entry, name in rows]


def pending_count() -> int:
    with get_session_context() as session:
        return session.exec(
            select(func.count())
            .select_from(QueueEntry)
            .where(QueueEntry.status.in_(UNRESOLVED_STATUSES))  # type: ignore[attr-defined]
        ).one()


def history(
    status: Optional[str] = None,
    agent: Optional[str] = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> List[Tuple[QueueEntry, str]]:
    """Most recent entries first, optionally filtered by status and agent-name substring."""
    stmt = (
        select(QueueEntry, GatewayApiKey.name)
        .join(GatewayApiKey, GatewayApiKey.id == QueueEntry.key_id)
    )
    if status:
        stmt = stmt.where(QueueEntry.status == status)
    if agent:
        stmt = stmt.where(GatewayApiKey.name.contains(agent))  # type: ignore[attr-defined]
    stmt = stmt.order_by(QueueEntry.created_at.desc()).limit(max(1, limit))  # type: ignore[attr-defined]
    with get_session_context() as session:
        return [(entry, name) for entry, name in session.exec(stmt).all()]


def window_usage(key_id: str, since: datetime) -> Tuple[int, Optional[datetime]]:
    """Count of this key's entries (any status) created at/after ``since``,
    and the oldest such ``created_at``."""
    with get_session_context() as session:
        count, oldest = session.exec(
            select(func.count(), func.min(QueueEntry.created_at))
            .where(QueueEntry.key_id == key_id, QueueEntry.created_at >= since)
        ).one()
    if isinstance(oldest, str):
        oldest = datetime.fromisoformat(oldest)
    if oldest is not None:
        oldest = as_utc(oldest)
    return int(count or 0), oldest


# ---------------------------------------------------------------------------
# Conditional transitions
# ---------------------------------------------------------------------------

def claim(action_id: str, target_status: str) -> bool:
    """Atomically move an unresolved entry to approved/denied.

    Returns True only for the single caller whose UPDATE matched.
    """
    if target_status not in (ActionStatus.APPROVED.value, ActionStatus.DENIED.value):
        raise ValueError(f"Cannot claim into {target_status!r}")
    table = QueueEntry.__table__

    def _update() -> bool:
        with get_engine().begin() as conn:
            result = conn.execute(
                update(table)
                .where(table.c.id == action_id, table.c.status.in_(UNRESOLVED_STATUSES))
                .values(status=target_status, reviewed_at=utcnow())
            )
            return result.rowcount == 1

    won = sqlite_retry(_update)
    logger.info("Claim %s on %s: %s", target_status, action_id, "won" if won else "lost")
    return won


def record_outcome(action_id: str, sent: bool, error_message: Optional[str] = None) -> bool:
    """approved -> sent|failed. Returns False when the entry was not approved."""
    table = QueueEntry.__table__
    values: Dict[str, Any]
    if sent:
        values = {"status": ActionStatus.SENT.value, "sent_at": utcnow(), "error_message": None}
    else:
        values = {"status": ActionStatus.FAILED.value, "error_message": error_message or "unknown error"}

    def _update() -> bool:
        with get_engine().begin() as conn:
            result = conn.execute(
                update(table)
                .where(table.c.id == action_id, table.c.status == ActionStatus.APPROVED.value)
                .values(**values)
            )
            return result.rowcount == 1

    return sqlite_retry(_update)
