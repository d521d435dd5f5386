"""
Recipient Allowlist
===================

Per-key restriction on who an agent may message. A key with no entries is
unrestricted.

Patterns:
  - exact email:   alice@acme.com   (case-insensitive)
  - exact phone:   +1 (555) 010-2000  (compared on digits only)
  - domain:        *@acme.com       (any local part at exactly acme.com)
"""

import logging
import re
from typing import Iterable, List

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from commgate.core.database import get_engine, get_session_context
from commgate.core.timeutil import utcnow
from commgate.models.api_key import AllowlistEntry

logger = logging.getLogger(__name__)

_PHONE_CHARS = re.compile(r"^\+?[0-9 ()\-.]+$")
_PHONE_STRIP = re.compile(r"[+\s()\-.]")


def looks_like_phone(value: str) -> bool:
    value = value.strip()
    if not _PHONE_CHARS.match(value):
        return False
    return any(ch.isdigit() for ch in value)


def normalize_address(value: str) -> str:
    """Canonical form used for every comparison (and for consent lookups)."""
    value = value.strip()
    if looks_like_phone(value):
        return _PHONE_STRIP.sub("", value)
    return value.lower()


def pattern_matches(pattern: str, recipient: str) -> bool:
    pattern = pattern.strip()
    target = normalize_address(recipient)
    if pattern.startswith("*@"):
        domain = pattern[2:].lower()
        return bool(domain) and "@" in target and target.rsplit("@", 1)[1] == domain
    return normalize_address(pattern) == target


def is_recipient_allowed(patterns: Iterable[str], recipient: str) -> bool:
    """True when there are no patterns, or at least one matches."""
    patterns = list(patterns)
    if not patterns:
        return True
    return any(pattern_matches(p, recipient) for p in patterns)


def validate_pattern(pattern: str) -> str:
    pattern = pattern.strip()
    if not pattern:
        raise ValueError("Allowlist pattern must not be empty")
    if pattern.startswith("*@"):
        if len(pattern) == 2 or "@" in pattern[2:]:
            raise ValueError(f"Invalid domain pattern: {pattern!r}")
    elif "*" in pattern:
        raise ValueError(f"Wildcards are only supported as *@domain: {pattern!r}")
    return pattern


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def list_patterns(key_id: str) -> List[str]:
    with get_session_context() as session:
        rows = session.exec(
            select(AllowlistEntry)
            .where(AllowlistEntry.key_id == key_id)
            .order_by(AllowlistEntry.id)
        ).all()
        return [row.recipient_pattern for row in rows]


def add_pattern(key_id: str, pattern: str) -> bool:
    """Insert a pattern. Returns False when it was already present."""
    pattern = validate_pattern(pattern)
    with get_session_context() as session:
        existing = session.exec(
            select(AllowlistEntry).where(
                AllowlistEntry.key_id == key_id,
                AllowlistEntry.recipient_pattern == pattern,
            )
        ).first()
        if existing is not None:
            return False
        session.add(AllowlistEntry(key_id=key_id, recipient_pattern=pattern))
        try:
            session.commit()
        except IntegrityError:
            # Concurrent insert of the same pattern
            session.rollback()
            return False
    return True


def replace_patterns(key_id: str, patterns: Iterable[str]) -> List[str]:
    """Replace the key's allowlist in one transaction. Use clear_patterns() to lift it."""
    cleaned: List[str] = []
    for p in patterns:
        p = validate_pattern(p)
        if p not in cleaned:
            cleaned.append(p)
    if not cleaned:
        raise ValueError("Replacement allowlist must contain at least one pattern")
    table = AllowlistEntry.__table__
    now = utcnow()
    with get_engine().begin() as conn:
        conn.execute(delete(table).where(table.c.key_id == key_id))
        conn.execute(
            insert(table),
            [{"key_id": key_id, "recipient_pattern": p, "created_at": now} for p in cleaned],
        )
    logger.info("Allowlist for key %s replaced (%d patterns)", key_id, len(cleaned))
    return cleaned


def remove_pattern(key_id: str, pattern: str) -> bool:
    table = AllowlistEntry.__table__
    with get_engine().begin() as conn:
        result = conn.execute(
            delete(table).where(
                table.c.key_id == key_id,
                table.c.recipient_pattern == pattern.strip(),
            )
        )
        return result.rowcount > 0


def clear_patterns(key_id: str) -> int:
    """Drop every pattern, leaving the key unrestricted. Returns the count removed."""
    table = AllowlistEntry.__table__
    with get_engine().begin() as conn:
        removed = conn.execute(delete(table).where(table.c.key_id == key_id)).rowcount
    logger.info("Allowlist for key %s cleared (%d patterns)", key_id, removed)
    return removed
