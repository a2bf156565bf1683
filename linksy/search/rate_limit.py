"""
Linksy Host Widget Rate Limiter

Sliding-window limit on searches per (host, caller IP), stored in a Redis
sorted set so every API worker sees the same window. Members are request
timestamps; entries older than the window are trimmed on each check.

The limiter fails open: with no Redis client, or on a Redis error, the
request is allowed and a warning is logged.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from redis import Redis

logger = structlog.get_logger(__name__)

KEY_PREFIX = "search_ratelimit"


@dataclass
class RateLimitResult:
    """Outcome of a rate-limit check. ``reset`` is a unix timestamp in seconds."""

    success: bool
    limit: int
    remaining: int
    reset: int


def _make_key(host_provider_id: str, client_ip: str) -> str:
    return f"{KEY_PREFIX}:{host_provider_id}:{client_ip}"


def check_rate_limit(
    host_provider_id: str,
    client_ip: str,
    limit: int,
    window_seconds: int,
    redis_client: Optional[Redis],
    now: Optional[float] = None,
) -> RateLimitResult:
    """
    Count this request against the caller's window.

    Trim, record and count run in one MULTI transaction, so concurrent
    workers see each other's requests and at most *limit* are admitted per
    window. A rejected request removes its own entry again, so a caller that
    backs off regains capacity as old entries age out.
    """
    now = time.time() if now is None else now
    default_reset = int(now + window_seconds)

    if redis_client is None:
        return RateLimitResult(True, limit, limit, default_reset)

    key = _make_key(host_provider_id, client_ip)
    member = f"{now}:{uuid.uuid4().hex[:8]}"
    try:
        pipe = redis_client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, window_seconds + 60)
        _, _, current_count, oldest, _ = pipe.execute()

        reset = int(oldest[0][1] + window_seconds) if oldest else default_reset

        if current_count > limit:
            redis_client.zrem(key, member)
            logger.info("rate_limit_exceeded", host_provider_id=host_provider_id, limit=limit)
            return RateLimitResult(False, limit, 0, reset)

        return RateLimitResult(True, limit, limit - current_count, reset)

    except Exception as exc:
        logger.warning("rate_limit_backend_error", error=str(exc))
        return RateLimitResult(True, limit, limit, default_reset)
