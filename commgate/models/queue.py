"""
Queue Entry Model
=================

One agent request to send a message ("action"), tracked through:

    pending / flagged  ->  approved  ->  sent | failed
    pending / flagged  ->  denied

Channel, recipient and body never change after insert. ``context`` is the
agent's opaque payload, stored verbatim as JSON text for the operator to
read; nothing branches on it.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import Column, Field, SQLModel, Text

from commgate.core.timeutil import utcnow


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    IMESSAGE = "imessage"


class Priority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ActionStatus(str, Enum):
    PENDING = "pending"
    FLAGGED = "flagged"
    APPROVED = "approved"
    DENIED = "denied"
    SENT = "sent"
    FAILED = "failed"


UNRESOLVED_STATUSES = (ActionStatus.PENDING.value, ActionStatus.FLAGGED.value)
TERMINAL_STATUSES = (ActionStatus.DENIED.value, ActionStatus.SENT.value, ActionStatus.FAILED.value)

# Lower sorts first in the approval queue
PRIORITY_RANK = {
    Priority.URGENT.value: 0,
    Priority.HIGH.value: 1,
    Priority.NORMAL.value: 2,
    Priority.LOW.value: 3,
}


class QueueEntry(SQLModel, table=True):
    """Persistent queued action."""

    __tablename__ = "gateway_queue"

    id: str = Field(primary_key=True, max_length=36)
    key_id: str = Field(foreign_key="gateway_api_keys.id", index=True, max_length=36)
    channel: str = Field(max_length=16)
    recipient_address: str = Field(max_length=320)
    recipient_name: Optional[str] = Field(default=None, nullable=True, max_length=255)
    subject: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    body: str = Field(sa_column=Column(Text, nullable=False))
    priority: str = Field(default=Priority.NORMAL.value, max_length=16)
    status: str = Field(default=ActionStatus.PENDING.value, max_length=16, index=True)
    context_json: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=utcnow, index=True)
    reviewed_at: Optional[datetime] = Field(default=None, nullable=True)
    sent_at: Optional[datetime] = Field(default=None, nullable=True)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    @property
    def context(self) -> Dict[str, Any]:
        if not self.context_json:
            return {}
        try:
            value = json.loads(self.context_json)
        except (json.JSONDecodeError, TypeError):
            return {}
        return value if isinstance(value, dict) else {}
