"""Rate limiting utilities using throttled-py"""
from datetime import timedelta
from fastapi import Request
from throttled import Throttled, RateLimiterType, store, rate_limiter

from core.config import logger, REDIS_URL
from core.errors import RateLimited

# Initialize storage - Redis for production, MemoryStore for development
try:
    if REDIS_URL:
        # RedisStore expects the URL string, not a Redis client object
        storage = store.RedisStore(server=REDIS_URL)
        logger.info("[rate_limit] Using Redis for rate limiting")
    else:
        storage = store.MemoryStore()
        logger.warning("[rate_limit] REDIS_URL not set - using in-memory storage (not suitable for production with multiple workers)")
except Exception as ex:
    storage = store.MemoryStore()
    logger.warning(f"[rate_limit] Redis connection failed, using in-memory storage: {ex}")

# Gift card lookup/redeem: 20 attempts per IP per 10 minutes (code guessing)
giftcard_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(minutes=10), limit=20),
    store=storage,
)

# Checkout: 10 order attempts per user per 10 minutes
checkout_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(minutes=10), limit=10),
    store=storage,
)

# Gift card purchase: 5 per IP per hour
giftcard_purchase_throttle = Throttled(
    using=RateLimiterType.FIXED_WINDOW.value,
    quota=rate_limiter.per_duration(timedelta(hours=1), limit=5),
    store=storage,
)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or ""
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce(throttle: Throttled, key: str, message: str) -> None:
    """Raise RateLimited when key is over quota. Limiter failures fail open."""
    try:
        result = throttle.limit(key, cost=1)
    except Exception as ex:
        logger.warning(f"[rate_limit] check for {key} failed: {ex}")
        return
    if result.limited:
        logger.info(f"[rate_limit] limited {key}")
        raise RateLimited(message)
