"""
Contact consent lookup.

The contact database is an external collaborator; the gateway only needs
to ask "may an AI contact this address?". ``ConsentLookup`` is that
contract. ``SqlConsentLookup`` is the shipped implementation backed by the
``contact_consent`` table, which the operator maintains with
``gateway consent deny|allow``. Unknown addresses are allowed.
"""

import logging
from typing import List, Protocol

from sqlmodel import select

from commgate.core.database import get_session_context
from commgate.core.timeutil import utcnow
from commgate.models.consent import ContactConsent
from commgate.services.allowlist import normalize_address

logger = logging.getLogger(__name__)


class ConsentLookup(Protocol):
    def is_contact_allowed(self, address: str) -> bool:
        ...


class SqlConsentLookup:
    """Consent flags stored in the gateway database."""

    def is_contact_allowed(self, address: str) -> bool:
        key = normalize_address(address)
        with get_session_context() as session:
            record = session.get(ContactConsent, key)
            if record is None:
                return True
            return bool(record.ai_contact_allowed)


def set_consent(address: str, allowed: bool) -> ContactConsent:
    key = normalize_address(address)
    if not key:
        raise ValueError("Address must not be empty")
    with get_session_context() as session:
        record = session.get(ContactConsent, key)
        if record is None:
            record = ContactConsent(address=key)
        record.ai_contact_allowed = allowed
        record.updated_at = utcnow()
        session.add(record)
        session.commit()
        session.refresh(record)
    logger.info("Consent for %s set to %s", key, "allowed" if allowed else "denied")
    return record


def list_consent() -> List[ContactConsent]:
    with get_session_context() as session:
        return list(session.exec(select(ContactConsent).order_by(ContactConsent.address)).all())
