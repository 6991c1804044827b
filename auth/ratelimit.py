"""
auth/ratelimit.py -- Fixed-window request counters for the magic-link endpoint.

Built directly on the `limits` library (the backend slowapi uses for the
password login route in api/limiter.py). slowapi's decorator only keys by a
request-derived function, and the email variant needs the request body, so
the magic-link endpoint calls RateLimiter.check() itself.

Two variants share one storage instance:
  magic-link-ip     10 requests per 15 minutes per client IP. Rejection is a
                    429 with Retry-After.
  magic-link-email  3 requests per 5 minutes per normalized email. Rejection
                    is silent: the caller answers with the same generic body
                    as a real request so the limit does not reveal anything.

The window is anchored at the first hit for a key and the counter expires
with it. memory:// counters are process-local and lost on restart; any
`limits` storage URI (redis://, memcached://) can be passed instead.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from limits import RateLimitItem, RateLimitItemPerMinute
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger("supplierportal.ratelimit")

MAGIC_LINK_IP_PREFIX = "magic-link-ip"
MAGIC_LINK_EMAIL_PREFIX = "magic-link-email"
MAGIC_LINK_IP_LIMIT = RateLimitItemPerMinute(10, 15)
MAGIC_LINK_EMAIL_LIMIT = RateLimitItemPerMinute(3, 5)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0  # seconds; 0 when allowed


def build_rate_limit_storage(uri: str = "memory://") -> Storage:
    """Return a `limits` storage for the given URI (default: process-local memory)."""
    return storage_from_string(uri)


class RateLimiter:
    """One fixed-window counter family, e.g. per-IP magic-link requests.

    Usage:
        storage = build_rate_limit_storage()
        by_ip = RateLimiter(storage, MAGIC_LINK_IP_LIMIT, MAGIC_LINK_IP_PREFIX)
        decision = by_ip.check(request.client.host)
    """

    def __init__(self, storage: Storage, limit: RateLimitItem, key_prefix: str) -> None:
        self._limiter = FixedWindowRateLimiter(storage)
        self.limit = limit
        self.key_prefix = key_prefix

    def check(self, identifier: str) -> RateLimitDecision:
        """Count one request for identifier and decide whether it may proceed.

        A rejected request is not counted again, so a client hammering the
        endpoint does not push its own window further out.
        """
        if self._limiter.hit(self.limit, self.key_prefix, identifier):
            return RateLimitDecision(allowed=True)
        stats = self._limiter.get_window_stats(self.limit, self.key_prefix, identifier)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        logger.warning("Rate limit hit: %s/%s retry_after=%ds", self.key_prefix, identifier, retry_after)
        return RateLimitDecision(allowed=False, retry_after=retry_after)
