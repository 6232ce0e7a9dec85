from datetime import timedelta

import pytest
from throttled import RateLimiterType, Throttled, rate_limiter, store

from core.errors import RateLimited
from utils.rate_limit import enforce


def _throttle(limit):
    return Throttled(
        using=RateLimiterType.FIXED_WINDOW.value,
        quota=rate_limiter.per_duration(timedelta(minutes=10), limit=limit),
        store=store.MemoryStore(),
    )


def test_over_quota_is_rate_limited():
    throttle = _throttle(2)
    enforce(throttle, "giftcard:10.0.0.1", "slow down")
    enforce(throttle, "giftcard:10.0.0.1", "slow down")
    with pytest.raises(RateLimited) as exc:
        enforce(throttle, "giftcard:10.0.0.1", "slow down")
    assert exc.value.status_code == 429
    assert exc.value.message == "slow down"


def test_keys_are_independent():
    throttle = _throttle(1)
    enforce(throttle, "checkout:buyer-1", "wait")
    enforce(throttle, "checkout:buyer-2", "wait")


def test_limiter_failure_fails_open():
    class BrokenThrottle:
        def limit(self, key, cost=1):
            raise ConnectionError("redis unavailable")

    enforce(BrokenThrottle(), "checkout:buyer-1", "wait")
