"""
Gateway error codes.

GatewayError is the base exception for every structured error the gateway
returns. Each subclass pins a registry code; the exception handler in
``commgate.core.errors.middleware`` looks the code up in registry.yaml for
the HTTP status, severity and safe message, and merges ``context`` into the
response body so agents can branch on machine-readable fields.

Usage:
    from commgate.core.errors import RateLimitExceeded
    raise RateLimitExceeded(context={"limit_type": "hourly", "limit": 10, ...})
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

CODE_PATTERN = re.compile(r"^[a-z][a-z_]+[a-z]$")


class GatewayError(Exception):
    """Structured gateway error tied to the error registry.

    Args:
        code: Registry error code, e.g. "rate_limit_exceeded". Subclasses
            provide a default.
        detail: Internal-only detail (logged, never returned).
        context: Public key-value fields merged into the error body.
        message: Public message overriding the registry's safe message.
    """

    code: str = "internal_error"

    def __init__(
        self,
        code: Optional[str] = None,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> None:
        code = code or type(self).code
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        self.message = message
        super().__init__(f"{code}: {detail or message}" if (detail or message) else code)


class AuthError(GatewayError):
    """Unknown, malformed or revoked gateway key."""

    code = "unauthorized"


class ValidationError(GatewayError):
    """Malformed send request."""

    code = "bad_request"


class ConsentDenied(GatewayError):
    """Recipient opted out of AI-initiated contact. Agents must not retry."""

    code = "contact_consent_denied"


class NotAllowlisted(GatewayError):
    code = "recipient_not_allowed"


class RateLimitExceeded(GatewayError):
    code = "rate_limit_exceeded"


class ContentBlocked(GatewayError):
    code = "content_blocked"


class NotFound(GatewayError):
    code = "not_found"


class LocalOnly(GatewayError):
    code = "local_only"


class AlreadyResolved(GatewayError):
    """Lost the approve/deny claim: the entry was resolved by another caller."""

    code = "already_resolved"

    @property
    def status(self) -> Optional[str]:
        return self.context.get("status")


class DeliveryFailed(GatewayError):
    """A channel sender failed. Recorded on the entry, surfaced through poll."""

    code = "delivery_failed"


class WebhookDeliveryFailed(GatewayError):
    """Webhook POST failed. Logged by the notifier, never raised to callers."""

    code = "webhook_delivery_failed"
