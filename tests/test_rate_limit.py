"""
tests/test_rate_limit.py -- Unit tests for the magic-link rate limiters (auth/ratelimit.py).

Covers:
  - Requests up to the limit pass; the next one is rejected with retry_after
  - Keys and key prefixes are counted independently over one storage
  - Windows expire on their own
"""

from __future__ import annotations

import time

from limits import RateLimitItemPerMinute, RateLimitItemPerSecond

from auth.ratelimit import (
    MAGIC_LINK_EMAIL_LIMIT,
    MAGIC_LINK_EMAIL_PREFIX,
    MAGIC_LINK_IP_LIMIT,
    MAGIC_LINK_IP_PREFIX,
    RateLimiter,
    build_rate_limit_storage,
)


def test_configured_limits() -> None:
    assert MAGIC_LINK_IP_LIMIT.amount == 10
    assert MAGIC_LINK_IP_LIMIT.get_expiry() == 15 * 60
    assert MAGIC_LINK_EMAIL_LIMIT.amount == 3
    assert MAGIC_LINK_EMAIL_LIMIT.get_expiry() == 5 * 60


def test_rejects_after_limit_with_retry_after() -> None:
    limiter = RateLimiter(build_rate_limit_storage(), RateLimitItemPerMinute(3, 5), "test")
    decisions = [limiter.check("10.0.0.1") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert decisions[0].retry_after == 0
    assert 1 <= decisions[-1].retry_after <= 5 * 60


def test_identifiers_are_independent() -> None:
    limiter = RateLimiter(build_rate_limit_storage(), RateLimitItemPerMinute(1, 5), "test")
    assert limiter.check("a@x.com").allowed
    assert not limiter.check("a@x.com").allowed
    assert limiter.check("b@x.com").allowed


def test_prefixes_share_storage_without_sharing_counters() -> None:
    storage = build_rate_limit_storage()
    by_ip = RateLimiter(storage, RateLimitItemPerMinute(1, 15), MAGIC_LINK_IP_PREFIX)
    by_email = RateLimiter(storage, RateLimitItemPerMinute(1, 5), MAGIC_LINK_EMAIL_PREFIX)

    assert by_ip.check("same-key").allowed
    assert by_email.check("same-key").allowed
    assert not by_ip.check("same-key").allowed


def test_window_expires() -> None:
    limiter = RateLimiter(build_rate_limit_storage(), RateLimitItemPerSecond(1, 1), "test")
    assert limiter.check("k").allowed
    assert not limiter.check("k").allowed
    time.sleep(1.2)
    assert limiter.check("k").allowed


def test_storage_reset_clears_counters() -> None:
    storage = build_rate_limit_storage()
    limiter = RateLimiter(storage, RateLimitItemPerMinute(1, 5), "test")
    limiter.check("k")
    assert not limiter.check("k").allowed
    storage.reset()
    assert limiter.check("k").allowed
