"""
Gateway API Models
==================

Pydantic request/response models for the agent-facing and operator-local
HTTP endpoints. Error bodies are produced by the exception handlers in
``commgate.core.errors.middleware`` and are not modelled here.
"""

from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from commgate.models.queue import Channel, Priority

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SendRequest(BaseModel):
    """Body of POST /gateway/send."""

    channel: Channel
    recipient_address: str = Field(..., min_length=1, max_length=320)
    recipient_name: Optional[str] = Field(None, max_length=255)
    subject: Optional[str] = Field(None, max_length=998)
    body: str = Field(..., max_length=100_000)
    priority: Priority = Priority.NORMAL
    context: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T


class SendResult(BaseModel):
    action_id: str
    status: str


class ActionStatusView(BaseModel):
    """Poll response and approve/deny result."""

    action_id: str
    status: str
    sent_at: Optional[str] = None
    error_message: Optional[str] = None


class HealthView(BaseModel):
    status: str = "ok"
    uptime_secs: int
    pending_count: int
    version: str


class QueueItemView(BaseModel):
    id: str
    agent_name: str
    channel: str
    recipient_address: str
    recipient_name: Optional[str] = None
    subject: Optional[str] = None
    body: str
    priority: str
    status: str
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: str


class QueueListView(BaseModel):
    entries: List[QueueItemView]
    count: int


class FilterReloadView(BaseModel):
    active_filters: int
    skipped_filters: int
