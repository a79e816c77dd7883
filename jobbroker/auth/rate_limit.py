"""Token bucket rate limiter backed by Redis."""

import time

import redis.asyncio as aioredis
from fastapi import Depends, Request, Response

from jobbroker.auth.identity import bearer_token
from jobbroker.config import settings
from jobbroker.errors import RateLimitError
from jobbroker.redis import get_redis

# Atomic refill-then-take on a hash {level, stamp}.
# Returns {allowed, whole tokens left, seconds until the next token}.
_TOKEN_BUCKET_SCRIPT = """
local cap, per_min, now = tonumber(ARGV[1]), tonumber(ARGV[2]), tonumber(ARGV[3])
local state = redis.call('HMGET', KEYS[1], 'level', 'stamp')
local level = tonumber(state[1]) or cap
local stamp = tonumber(state[2]) or now

if per_min > 0 then
    level = math.min(cap, level + (now - stamp) * per_min / 60.0)
end

local allowed = 0
if level >= 1 then
    level = level - 1
    allowed = 1
end
redis.call('HSET', KEYS[1], 'level', level, 'stamp', now)
redis.call('EXPIRE', KEYS[1], 120)

if allowed == 1 then
    return {1, math.floor(level), 0}
end
if per_min > 0 then
    return {0, 0, math.ceil((1 - level) * 60 / per_min)}
end
return {0, 0, 60}
"""


def _get_rate_config(method: str, path: str) -> tuple[int, int, str]:
    """Return (capacity, refill_per_min, category) based on endpoint."""
    if method == "POST" and "/bids" in path:
        return (
            settings.rate_limit_bidding_capacity,
            settings.rate_limit_bidding_refill_per_min,
            "bidding",
        )
    if method in ("POST", "PATCH", "PUT", "DELETE"):
        return (
            settings.rate_limit_write_capacity,
            settings.rate_limit_write_refill_per_min,
            "write",
        )
    return (
        settings.rate_limit_read_capacity,
        settings.rate_limit_read_refill_per_min,
        "read",
    )


def _get_client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For for reverse proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def _bucket_owner(request: Request) -> str:
    # Not verified here; the route dependency authenticates
    token = bearer_token(request)
    if token:
        actor_id = token.split(":", 1)[0]
        if actor_id:
            return actor_id
    return f"ip:{_get_client_ip(request)}"


async def check_rate_limit(
    request: Request,
    response: Response,
    redis: aioredis.Redis = Depends(get_redis),
) -> None:
    """Rate limit dependency, keyed by actor id or client IP."""
    if not settings.rate_limit_enabled:
        return

    capacity, refill_rate, category = _get_rate_config(request.method.upper(), request.url.path)
    bucket_key = f"ratelimit:{_bucket_owner(request)}:{category}"

    result = await redis.eval(
        _TOKEN_BUCKET_SCRIPT, 1, bucket_key, capacity, refill_rate, time.time()
    )
    allowed, remaining, retry_after = int(result[0]), int(result[1]), int(result[2])

    response.headers["X-RateLimit-Limit"] = str(capacity)
    response.headers["X-RateLimit-Remaining"] = str(remaining)

    if not allowed:
        raise RateLimitError("Rate limit exceeded", details={"retry_after": retry_after})
