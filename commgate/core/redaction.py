"""
Redaction for text that leaves the process boundary.

Delivery failures are persisted on the queue entry and echoed to the agent
via poll and webhook, so provider error text is scrubbed before storage.
Value-based patterns cover gateway keys, bearer tokens, JWTs, credential
assignments and URL query strings.
"""
from __future__ import annotations

import re

MAX_ERROR_LENGTH = 500

# ── Value-based patterns ────────────────────────────────────────────
_GATEWAY_KEY_PATTERN = re.compile(r"\bgw_[a-f0-9]{16,}\b")
_JWT_PATTERN = re.compile(
    r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"
)
_BEARER_PATTERN = re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9._~+/=-]+")
_ASSIGNMENT_PATTERN = re.compile(
    r"(?i)\b(password|passwd|secret|token|api[_-]?key|authorization)\b(\s*[:=]\s*)\S+"
)
_URL_QUERY_PATTERN = re.compile(
    r"(https?://[^\s?]+)\?[^\s]*"
)
_URL_USERINFO_PATTERN = re.compile(r"(https?://)[^\s/@]+@")


def redact_secrets(value: str) -> str:
    """Apply value-based redaction patterns to a string."""
    value = _GATEWAY_KEY_PATTERN.sub("gw_[REDACTED]", value)
    value = _JWT_PATTERN.sub("[REDACTED_JWT]", value)
    value = _BEARER_PATTERN.sub(r"\1 [REDACTED]", value)
    value = _ASSIGNMENT_PATTERN.sub(r"\1\2[REDACTED]", value)
    value = _URL_USERINFO_PATTERN.sub(r"\1[REDACTED]@", value)
    value = _URL_QUERY_PATTERN.sub(r"\1?[QUERY_REDACTED]", value)
    return value


def safe_error_category(exc: BaseException) -> str:
    """Map an arbitrary exception to a category without leaking its text."""
    if isinstance(exc, TimeoutError):
        return "timeout"
    if isinstance(exc, ConnectionError):
        return "connection_error"
    if isinstance(exc, PermissionError):
        return "permission_denied"
    if isinstance(exc, FileNotFoundError):
        return "sender_unavailable"
    if isinstance(exc, OSError):
        return "os_error"
    return "internal_error"


def sanitize_error_message(message: str) -> str:
    """Redact and truncate a message destined for queue storage."""
    cleaned = redact_secrets(" ".join(message.split()))
    if len(cleaned) > MAX_ERROR_LENGTH:
        cleaned = cleaned[: MAX_ERROR_LENGTH - 3] + "..."
    return cleaned
