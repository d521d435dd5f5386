"""Per-address consent flag for AI-initiated contact."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from commgate.core.timeutil import utcnow


class ContactConsent(SQLModel, table=True):
    """
    Consent record keyed by normalized address (lowercased email, or the
    digits of a phone number). Addresses without a row are allowed.
    """

    __tablename__ = "contact_consent"

    address: str = Field(primary_key=True, max_length=320)
    ai_contact_allowed: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=utcnow)
