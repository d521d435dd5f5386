"""Table models. Importing this package registers every table on SQLModel.metadata."""

from commgate.models.api_key import AllowlistEntry, GatewayApiKey
from commgate.models.consent import ContactConsent
from commgate.models.content_filter import ContentFilter, FilterAction, PatternType
from commgate.models.queue import ActionStatus, Channel, Priority, QueueEntry

__all__ = [
    "ActionStatus",
    "AllowlistEntry",
    "Channel",
    "ContactConsent",
    "ContentFilter",
    "FilterAction",
    "GatewayApiKey",
    "PatternType",
    "Priority",
    "QueueEntry",
]
