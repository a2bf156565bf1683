"""
Linksy Geocoder Adapter

Resolves postal codes and street addresses to coordinates via the Google
Geocoding API.

Functions:
    geocode_address       — Async lookup used on the search path
    geocode_address_sync  — Blocking lookup used by the Celery geocoding job
    resolve_location      — Explicit coordinates, else cached / geocoded ZIP

Rules:
    - Geocoding never fails a search: any error yields ``None`` and a warning
    - The API key is never logged
"""

from typing import Any, Optional

import httpx
import structlog
from redis import Redis

from linksy.cache.redis_cache import get_cached_location, set_cached_location
from linksy.config import settings

logger = structlog.get_logger(__name__)


def _parse_response(address: str, data: dict[str, Any]) -> Optional[dict[str, float]]:
    """Extract ``{"lat", "lng"}`` from a Geocoding API payload."""
    status = data.get("status")
    results = data.get("results") or []
    if status != "OK" or not results:
        logger.info("geocode_no_result", address=address, status=status)
        return None
    point = results[0]["geometry"]["location"]
    return {"lat": float(point["lat"]), "lng": float(point["lng"])}


def _params(address: str) -> dict[str, str]:
    return {"address": address, "key": settings.GOOGLE_MAPS_API_KEY or ""}


async def geocode_address(address: str) -> Optional[dict[str, float]]:
    """Geocode *address* (a ZIP code or full street address). ``None`` on any failure."""
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.warning("geocode_skipped_no_api_key")
        return None

    try:
        async with httpx.AsyncClient(timeout=settings.GEOCODER_TIMEOUT_SECONDS) as client:
            response = await client.get(settings.GEOCODER_URL, params=_params(address))
            response.raise_for_status()
            return _parse_response(address, response.json())
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("geocode_failed", address=address, error=str(exc))
        return None


def geocode_address_sync(address: str, client: httpx.Client) -> Optional[dict[str, float]]:
    """Blocking variant of :func:`geocode_address` sharing one HTTP client across a batch."""
    if not settings.GOOGLE_MAPS_API_KEY:
        logger.warning("geocode_skipped_no_api_key")
        return None

    try:
        response = client.get(settings.GEOCODER_URL, params=_params(address))
        response.raise_for_status()
        return _parse_response(address, response.json())
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("geocode_failed", address=address, error=str(exc))
        return None


async def resolve_location(
    location: Optional[dict[str, float]],
    zip_code: Optional[str],
    redis_client: Optional[Redis] = None,
) -> Optional[dict[str, float]]:
    """
    Produce the caller location for a search.

    Explicit coordinates take precedence. Otherwise the ZIP code is looked
    up in the cache, then geocoded; successful lookups are cached.
    """
    if location is not None:
        return {"lat": location["lat"], "lng": location["lng"]}

    if not zip_code or not zip_code.strip():
        return None

    zip_code = zip_code.strip()
    cached = get_cached_location(zip_code, redis_client)
    if cached is not None:
        return cached

    resolved = await geocode_address(zip_code)
    if resolved is not None:
        set_cached_location(zip_code, resolved, redis_client)
    return resolved
