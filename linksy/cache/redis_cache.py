"""
Linksy Redis Geocode Cache

ZIP code to coordinates lookups, stored as JSON strings under
``geocode_cache:{md5(normalized zip)}`` with a 30-day TTL by default.

The cache is an optimisation only. With no client, on any Redis error, or
when a stored value cannot be decoded, callers see a miss and geocode again.
Failed geocodes are never stored.
"""

import hashlib
import json
from typing import Optional

import structlog
from redis import Redis

from linksy.config import get_settings

logger = structlog.get_logger(__name__)

CACHE_KEY_PREFIX = "geocode_cache"
_SCAN_BATCH = 500


def _make_cache_key(zip_code: str) -> str:
    normalized = zip_code.strip().upper()
    return f"{CACHE_KEY_PREFIX}:{hashlib.md5(normalized.encode('utf-8')).hexdigest()}"


def _decode(raw: str) -> Optional[dict[str, float]]:
    try:
        payload = json.loads(raw)
        return {"lat": float(payload["lat"]), "lng": float(payload["lng"])}
    except (TypeError, ValueError, KeyError):
        return None


def get_cached_location(zip_code: str, redis_client: Optional[Redis]) -> Optional[dict[str, float]]:
    """Cached ``{"lat", "lng"}`` for *zip_code*, or ``None`` on a miss."""
    if redis_client is None:
        return None

    key = _make_cache_key(zip_code)
    try:
        raw = redis_client.get(key)
    except Exception:
        logger.warning("geocode_cache_get_error", key=key, exc_info=True)
        return None

    if raw is None:
        logger.debug("geocode_cache_miss", key=key)
        return None

    location = _decode(raw)
    if location is None:
        logger.warning("geocode_cache_corrupt_entry", key=key)
    else:
        logger.debug("geocode_cache_hit", key=key)
    return location


def set_cached_location(
    zip_code: str,
    location: dict[str, float],
    redis_client: Optional[Redis],
) -> bool:
    """Store a successful lookup. Returns ``False`` when skipped or on error."""
    if redis_client is None:
        return False

    ttl = get_settings().GEOCODE_CACHE_TTL_SECONDS
    key = _make_cache_key(zip_code)
    payload = json.dumps({"lat": location["lat"], "lng": location["lng"]})
    try:
        redis_client.set(key, payload, ex=ttl)
    except Exception:
        logger.warning("geocode_cache_set_error", key=key, exc_info=True)
        return False

    logger.debug("geocode_cache_set", key=key, ttl=ttl)
    return True


def invalidate_geocode_cache(redis_client: Redis) -> int:
    """Delete all cached lookups, scanning in batches. Returns keys deleted."""
    deleted = 0
    batch: list[str] = []
    try:
        for key in redis_client.scan_iter(match=f"{CACHE_KEY_PREFIX}:*", count=_SCAN_BATCH):
            batch.append(key)
            if len(batch) >= _SCAN_BATCH:
                deleted += redis_client.delete(*batch)
                batch = []
        if batch:
            deleted += redis_client.delete(*batch)
    except Exception:
        logger.warning("geocode_cache_invalidate_error", deleted=deleted, exc_info=True)
        return deleted

    logger.info("geocode_cache_invalidated", deleted=deleted)
    return deleted
