"""
Gateway API Key Models
======================

SQLModel tables for agent credentials and their recipient allowlists.
Keys are stored as HMAC-SHA256 hashes. The raw key is shown once at
creation time and never persisted or logged.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from commgate.core.timeutil import utcnow


class GatewayApiKey(SQLModel, table=True):
    """
    Persistent agent credential.

    ``key_hash`` is HMAC-SHA256(raw_key, SERVER_PEPPER) and ``key_prefix``
    holds the first 11 characters (``gw_`` + 8 hex) for display. Rows are
    never deleted; ``revoked_at`` is set once and never cleared.
    """

    __tablename__ = "gateway_api_keys"

    id: str = Field(primary_key=True, max_length=36)
    name: str = Field(max_length=255)
    key_prefix: str = Field(max_length=16, index=True)
    key_hash: str = Field(max_length=128, unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = Field(default=None, nullable=True)
    revoked_at: Optional[datetime] = Field(default=None, nullable=True)
    rate_limit_per_hour: int = Field(default=10)
    rate_limit_per_day: int = Field(default=50)
    webhook_url: Optional[str] = Field(default=None, nullable=True, max_length=2048)

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class AllowlistEntry(SQLModel, table=True):
    """One permitted recipient pattern: exact address or ``*@domain``."""

    __tablename__ = "gateway_allowlist"
    __table_args__ = (UniqueConstraint("key_id", "recipient_pattern", name="uq_allowlist_key_pattern"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    key_id: str = Field(foreign_key="gateway_api_keys.id", index=True, max_length=36)
    recipient_pattern: str = Field(max_length=320)
    created_at: datetime = Field(default_factory=utcnow)
