"""
Policy Pipeline
===============

Single-pass decision for an inbound send request:

    1. authenticate     401 unauthorized
    2. validate         400 bad_request
    3. consent          403 contact_consent_denied
    4. allowlist        403 recipient_not_allowed
    5. rate limit       429 rate_limit_exceeded
    6. content filter   400 content_blocked  (or persist as flagged)

Each step either returns or raises its GatewayError subclass; the first
failure ends the run and nothing is persisted. Cheap identity checks run
before quota accounting, and regex evaluation runs last.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import pydantic

from commgate.core.errors import (
    ConsentDenied,
    ContentBlocked,
    NotAllowlisted,
    ValidationError,
)
from commgate.models.api_key import GatewayApiKey
from commgate.models.gateway import SendRequest
from commgate.models.queue import ActionStatus, Channel
from commgate.services import allowlist, key_store, queue_store
from commgate.services.consent import ConsentLookup
from commgate.services.content_filter import ContentFilterMatcher
from commgate.services.rate_limiter import SendRateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    action_id: str
    status: str


def _format_validation_errors(exc: pydantic.ValidationError) -> str:
    parts: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "body"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class PolicyPipeline:
    def __init__(
        self,
        matcher: ContentFilterMatcher,
        consent: ConsentLookup,
        rate_limiter: Optional[SendRateLimiter] = None,
    ):
        self.matcher = matcher
        self.consent = consent
        self.rate_limiter = rate_limiter or SendRateLimiter()

    def submit(self, raw_key: Optional[str], payload: Any) -> SendOutcome:
        api_key = self.authenticate(raw_key)
        request = self.validate(payload)
        self.check_consent(request)
        self.check_allowlist(api_key, request)
        self.rate_limiter.check(api_key)
        status, filter_name = self.check_content(request)

        entry = queue_store.insert_entry(
            key_id=api_key.id,
            channel=request.channel.value,
            recipient_address=request.recipient_address.strip(),
            recipient_name=request.recipient_name,
            subject=request.subject,
            body=request.body,
            priority=request.priority.value,
            status=status,
            context=request.context,
        )
        logger.info(
            "Queued %s action %s from key %s (%s%s)",
            entry.channel, entry.id, api_key.key_prefix, entry.status,
            f", matched {filter_name!r}" if filter_name else "",
        )
        return SendOutcome(action_id=entry.id, status=entry.status)

    # -- steps ---------------------------------------------------------------

    def authenticate(self, raw_key: Optional[str]) -> GatewayApiKey:
        return key_store.authenticate(raw_key)

    def validate(self, payload: Any) -> SendRequest:
        if not isinstance(payload, dict):
            raise ValidationError(message="Request body must be a JSON object")
        try:
            request = SendRequest.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(message=_format_validation_errors(exc))

        if not request.recipient_address.strip():
            raise ValidationError(message="recipient_address must not be empty")
        if not request.body.strip():
            raise ValidationError(message="body must not be empty")
        if request.channel == Channel.EMAIL and not (request.subject or "").strip():
            raise ValidationError(message="subject is required for email")
        return request

    def check_consent(self, request: SendRequest) -> None:
        if not self.consent.is_contact_allowed(request.recipient_address):
            raise ConsentDenied(
                message="Recipient has opted out of AI-initiated contact; do not retry.",
                context={"recipient": request.recipient_address},
            )

    def check_allowlist(self, api_key: GatewayApiKey, request: SendRequest) -> None:
        patterns = allowlist.list_patterns(api_key.id)
        if not allowlist.is_recipient_allowed(patterns, request.recipient_address):
            raise NotAllowlisted(
                detail=f"key {api_key.key_prefix} -> {request.recipient_address}",
                context={"allowed_patterns": patterns},
            )

    def check_content(self, request: SendRequest):
        subject = request.subject if request.channel == Channel.EMAIL else None
        match = self.matcher.check(subject, request.body)
        if match is None:
            return ActionStatus.PENDING.value, None
        if match.is_deny:
            raise ContentBlocked(
                message=f"Message blocked by content filter: {match.name}",
                context={"filter": match.name, "description": match.description},
            )
        logger.info("Content flagged by filter %s", match.name)
        return ActionStatus.FLAGGED.value, match.name
