"""
Linksy Proximity Search

Ring search for nearby providers and distance ranking.

Functions:
    haversine_miles       — Great-circle distance between two points in miles
    ring_search           — Widen-until-enough radius selection
    get_primary_location  — A provider's primary (or first) location
    rank_by_distance      — Attach distances and sort nearest first

Rules:
    - Radius lookups go through an injected callable so the ring policy is
      testable without PostGIS
    - The smallest ring with enough providers always wins, even if a larger
      ring would return more
    - Providers without a distance keep their retrieval order after all
      providers with one
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

EARTH_RADIUS_MILES = 3959
METERS_PER_MILE = 1609.34


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the haversine distance between two coordinates in miles (unrounded)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


@dataclass
class RingResult:
    """Outcome of a ring search: the chosen nearby ids and the radius they came from."""

    provider_ids: list[str] = field(default_factory=list)
    radius_miles: Optional[int] = None


def ring_search(
    location: Optional[dict[str, float]],
    lookup: Callable[[float, float, float], Sequence[str]],
    radii_miles: Sequence[int] = (10, 25, 50),
    min_providers: int = 2,
) -> Optional[RingResult]:
    """
    Find nearby provider ids by widening the search radius until enough are found.

    For each radius in increasing order, ``lookup(lat, lng, radius_meters)``
    is called. The first ring returning at least *min_providers* ids wins.
    Otherwise the first non-empty ring is kept as the answer.

    Args:
        location: Caller ``{"lat", "lng"}`` or ``None``.
        lookup: Returns provider ids within a radius in meters.
        radii_miles: Rings to try, smallest first.
        min_providers: Count that makes a ring sufficient.

    Returns:
        ``None`` when no location was given. Otherwise a RingResult; its
        ``provider_ids`` is empty (and ``radius_miles`` ``None``) when every
        ring came back empty.
    """
    if location is None:
        return None

    best = RingResult()
    for radius in radii_miles:
        ids = list(lookup(location["lat"], location["lng"], radius * METERS_PER_MILE))
        if len(ids) >= min_providers:
            best = RingResult(provider_ids=ids, radius_miles=radius)
            break
        if ids and not best.provider_ids:
            best = RingResult(provider_ids=ids, radius_miles=radius)

    logger.info(
        "ring_search",
        nearby_count=len(best.provider_ids),
        radius_miles=best.radius_miles,
    )
    return best


def get_primary_location(provider: dict[str, Any]) -> Optional[dict[str, Any]]:
    """First location flagged primary, else the first location, else ``None``."""
    locations = provider.get("locations") or []
    for loc in locations:
        if loc.get("is_primary"):
            return loc
    return locations[0] if locations else None


def _distance_to(location: Optional[dict[str, float]], primary: Optional[dict[str, Any]]) -> Optional[float]:
    if location is None or primary is None:
        return None
    if primary.get("latitude") is None or primary.get("longitude") is None:
        return None
    miles = haversine_miles(location["lat"], location["lng"], primary["latitude"], primary["longitude"])
    return round(miles, 1)


def rank_by_distance(
    providers: list[dict[str, Any]],
    location: Optional[dict[str, float]],
) -> list[dict[str, Any]]:
    """
    Attach ``distance`` and ``primaryLocation`` to each provider and sort.

    Sorting only happens when *location* is known. ``sorted`` is stable, so
    providers with equal distance (including all ``None`` distances) keep
    their incoming order.
    """
    ranked = []
    for provider in providers:
        primary = get_primary_location(provider)
        ranked.append({
            **provider,
            "primaryLocation": primary,
            "distance": _distance_to(location, primary),
        })

    if location is None:
        return ranked

    return sorted(
        ranked,
        key=lambda p: (p["distance"] is None, p["distance"] if p["distance"] is not None else 0.0),
    )
