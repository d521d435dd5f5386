"""
Send Rate Limiter: per-key hourly and daily quotas.

Windows are trailing (1 h, 24 h) and counted from the queue itself, over
every status. Denied entries still consume quota, so spamming requests that
an operator will reject does not buy extra attempts. Counting from the
store also makes the limit survive restarts and hold across the server and
any other writer.

retry_after_seconds is the exact time until the oldest entry inside the
exceeded window ages out (rounded up, at least 1 second).

Two concurrent requests at the boundary can both pass; the overshoot is at
most one entry per race and every entry still needs human approval.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from commgate.core.errors import RateLimitExceeded
from commgate.core.timeutil import as_utc, utcnow
from commgate.models.api_key import GatewayApiKey
from commgate.services import queue_store

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(hours=24)


@dataclass(frozen=True)
class WindowCheck:
    limit_type: str
    window: timedelta
    limit: int


def retry_after_seconds(oldest: Optional[datetime], window: timedelta, now: datetime) -> int:
    """Seconds until ``oldest`` leaves the trailing window ending at ``now``."""
    if oldest is None:
        return max(1, int(window.total_seconds()))
    remaining = (as_utc(oldest) + window - as_utc(now)).total_seconds()
    return max(1, math.ceil(remaining))


class SendRateLimiter:
    """Checks a key's hourly then daily quota against the queue."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def check(self, api_key: GatewayApiKey) -> None:
        """Raise RateLimitExceeded if either window is at its limit."""
        now = as_utc(self._clock())
        for check in (
            WindowCheck("hourly", HOUR, api_key.rate_limit_per_hour),
            WindowCheck("daily", DAY, api_key.rate_limit_per_day),
        ):
            count, oldest = queue_store.window_usage(api_key.id, now - check.window)
            if count >= check.limit:
                retry_after = retry_after_seconds(oldest, check.window, now)
                logger.info(
                    "Rate limit hit for key %s: %s %d/%d, retry in %ds",
                    api_key.key_prefix, check.limit_type, count, check.limit, retry_after,
                )
                raise RateLimitExceeded(
                    detail=f"{check.limit_type} limit reached for key {api_key.key_prefix}",
                    context={
                        "retry_after_seconds": retry_after,
                        "limit_type": check.limit_type,
                        "current_count": count,
                        "limit": check.limit,
                    },
                )
