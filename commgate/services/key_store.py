"""
Key Store: CRUD + HMAC verification for agent gateway keys.

Key format: gw_<48-char-hex>  (24 random bytes)
Storage: HMAC-SHA256(pepper, raw_key); the raw key is never stored.
Display: first 11 chars (``gw_`` + 8 hex) kept as ``key_prefix``.

The pepper comes from COMMGATE_APIKEY_HMAC_SECRET, or is generated once and
persisted to <data_directory>/.hmac_secret so the server and the operator
CLI (separate processes) hash identically.
"""

import hashlib
import hmac
import logging
import re
import secrets
import uuid
from typing import List, Optional, Tuple

from sqlmodel import select

from commgate.config import settings
from commgate.core.database import get_session_context, sqlite_retry
from commgate.core.errors import AuthError
from commgate.core.timeutil import utcnow
from commgate.models.api_key import GatewayApiKey

logger = logging.getLogger(__name__)

KEY_PREFIX = "gw_"
KEY_SECRET_BYTES = 24
KEY_DISPLAY_LENGTH = 11
KEY_PATTERN = re.compile(r"^gw_[a-f0-9]{48}$")

_HMAC_SECRET_FILE = settings.data_path / ".hmac_secret"


class KeyStoreError(Exception):
    """Raised for administrative key operation failures."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def _get_hmac_secret() -> str:
    """Return the HMAC pepper.

    Priority:
        1. COMMGATE_APIKEY_HMAC_SECRET env var / settings
        2. Persisted file at <data_directory>/.hmac_secret
        3. Auto-generate, persist, and log WARNING
    """
    if settings.apikey_hmac_secret:
        return settings.apikey_hmac_secret

    if _HMAC_SECRET_FILE.exists():
        stored = _HMAC_SECRET_FILE.read_text().strip()
        if stored:
            settings.apikey_hmac_secret = stored
            return stored

    generated = secrets.token_hex(32)
    try:
        _HMAC_SECRET_FILE.parent.mkdir(parents=True, exist_ok=True)
        _HMAC_SECRET_FILE.write_text(generated)
        _HMAC_SECRET_FILE.chmod(0o600)
    except OSError as exc:
        logger.warning("Could not persist HMAC secret to %s: %s", _HMAC_SECRET_FILE, exc)

    settings.apikey_hmac_secret = generated
    logger.warning(
        "COMMGATE_APIKEY_HMAC_SECRET not set, auto-generated and persisted to %s",
        _HMAC_SECRET_FILE,
    )
    return generated


def hash_key(raw_key: str) -> str:
    """HMAC-SHA256 hash a raw gateway key using the shared pepper."""
    pepper = _get_hmac_secret().encode()
    return hmac.new(pepper, raw_key.encode(), hashlib.sha256).hexdigest()


def is_valid_key_format(raw_key: object) -> bool:
    return isinstance(raw_key, str) and bool(KEY_PATTERN.match(raw_key))


def generate_key() -> str:
    return KEY_PREFIX + secrets.token_hex(KEY_SECRET_BYTES)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def authenticate(raw_key: Optional[str]) -> GatewayApiKey:
    """Resolve a presented key to its active record.

    Order of checks:
      1. Format (reject before any DB lookup)
      2. Lookup by hash, then constant-time compare
      3. Revocation
    A successful check stamps ``last_used_at``.
    """
    if not raw_key:
        raise AuthError(detail="missing key header")
    if not is_valid_key_format(raw_key):
        raise AuthError(detail="malformed key")

    expected_hash = hash_key(raw_key)

    def _lookup() -> GatewayApiKey:
        with get_session_context() as session:
            record = session.exec(
                select(GatewayApiKey).where(GatewayApiKey.key_hash == expected_hash)
            ).first()
            if record is None or not hmac.compare_digest(record.key_hash, expected_hash):
                raise AuthError(detail=f"unknown key {raw_key[:KEY_DISPLAY_LENGTH]}")
            if record.is_revoked:
                raise AuthError(detail=f"revoked key {record.key_prefix}")

            record.last_used_at = utcnow()
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    return sqlite_retry(_lookup)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

def create_key(
    name: str,
    rate_limit_per_hour: Optional[int] = None,
    rate_limit_per_day: Optional[int] = None,
) -> Tuple[str, GatewayApiKey]:
    """Create a new gateway key.

    Returns (raw_key, record). The raw key is shown ONCE.
    """
    name = name.strip()
    if not name:
        raise KeyStoreError("invalid_name", "Key name must not be empty")
    per_hour = settings.default_rate_limit_per_hour if rate_limit_per_hour is None else rate_limit_per_hour
    per_day = settings.default_rate_limit_per_day if rate_limit_per_day is None else rate_limit_per_day
    _check_limits(per_hour, per_day)

    raw_key = generate_key()
    record = GatewayApiKey(
        id=str(uuid.uuid4()),
        name=name,
        key_prefix=raw_key[:KEY_DISPLAY_LENGTH],
        key_hash=hash_key(raw_key),
        rate_limit_per_hour=per_hour,
        rate_limit_per_day=per_day,
    )
    with get_session_context() as session:
        session.add(record)
        session.commit()
        session.refresh(record)

    logger.info("Created gateway key %s (%s) for %r", record.id, record.key_prefix, name)
    return raw_key, record


def list_keys(include_revoked: bool = True) -> List[GatewayApiKey]:
    with get_session_context() as session:
        stmt = select(GatewayApiKey).order_by(GatewayApiKey.created_at)
        if not include_revoked:
            stmt = stmt.where(GatewayApiKey.revoked_at.is_(None))  # type: ignore[union-attr]
        return list(session.exec(stmt).all())


def count_active_keys() -> int:
    return len(list_keys(include_revoked=False))


def get_key(key_id: str) -> Optional[GatewayApiKey]:
    with get_session_context() as session:
        return session.get(GatewayApiKey, key_id)


def resolve_key(ident: str) -> GatewayApiKey:
    """Find a key by id prefix or display prefix (``gw_xxxxxxxx``).

    Raises KeyStoreError when nothing or more than one key matches.
    """
    ident = ident.strip()
    if not ident:
        raise KeyStoreError("not_found", "Key identifier must not be empty")
    matches = [
        k for k in list_keys()
        if k.id == ident or k.id.startswith(ident) or k.key_prefix.startswith(ident)
        or (len(ident) > KEY_DISPLAY_LENGTH and ident.startswith(k.key_prefix))
    ]
    exact = [k for k in matches if k.id == ident]
    if exact:
        return exact[0]
    if not matches:
        raise KeyStoreError("not_found", f"No key matching {ident!r}")
    if len(matches) > 1:
        names = ", ".join(f"{k.key_prefix} ({k.name})" for k in matches)
        raise KeyStoreError("ambiguous", f"{ident!r} matches several keys: {names}")
    return matches[0]


def revoke_key(key_id: str) -> bool:
    """Revoke a key. Returns False if it was already revoked."""
    with get_session_context() as session:
        record = session.get(GatewayApiKey, key_id)
        if record is None:
            raise KeyStoreError("not_found", f"Key {key_id} not found")
        if record.revoked_at is not None:
            return False
        record.revoked_at = utcnow()
        session.add(record)
        session.commit()
    logger.info("Revoked gateway key %s", key_id)
    return True


def set_rate_limits(
    key_id: str,
    per_hour: Optional[int] = None,
    per_day: Optional[int] = None,
) -> GatewayApiKey:
    with get_session_context() as session:
        record = session.get(GatewayApiKey, key_id)
        if record is None:
            raise KeyStoreError("not_found", f"Key {key_id} not found")
        new_hour = record.rate_limit_per_hour if per_hour is None else per_hour
        new_day = record.rate_limit_per_day if per_day is None else per_day
        _check_limits(new_hour, new_day)
        record.rate_limit_per_hour = new_hour
        record.rate_limit_per_day = new_day
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def set_webhook(key_id: str, url: Optional[str]) -> GatewayApiKey:
    """Set or clear (``url=None``) the key's webhook URL."""
    if url is not None:
        url = url.strip()
        if not (url.startswith("http://") or url.startswith("https://")):
            raise KeyStoreError("invalid_url", "Webhook URL must start with http:// or https://")
    with get_session_context() as session:
        record = session.get(GatewayApiKey, key_id)
        if record is None:
            raise KeyStoreError("not_found", f"Key {key_id} not found")
        record.webhook_url = url
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def _check_limits(per_hour: int, per_day: int) -> None:
    if per_hour < 0 or per_day < 0:
        raise KeyStoreError("invalid_limit", "Rate limits must be zero or positive")
