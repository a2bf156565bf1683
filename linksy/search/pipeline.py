"""
Linksy Search Pipeline

Orchestrates one provider search, from raw query to response body:

    gate → resolve location → embed + match needs → ring search →
    fetch providers → ZIP filter → distance rank → summarize → accounting

Each step is a short function in its own module; this module only wires
them together and decides which failures abort the search:

    - embedding, need matching and provider retrieval raise UpstreamSearchError
    - geocoding, ring search lookups and summarization degrade and continue
    - accounting never affects the response
"""

import time
from typing import Any, Optional

import structlog
from openai import AsyncOpenAI
from redis import Redis
from sqlalchemy.orm import Session

from linksy.config import settings
from linksy.db import dal
from linksy.search.accounting import record_search_usage
from linksy.search.embeddings import embed_query
from linksy.search.errors import InvalidQueryError, UpstreamSearchError
from linksy.search.gate import (
    check_host_access,
    check_host_rate_limit,
    check_token_budget,
    filtered_response,
    is_query_excluded,
)
from linksy.search.geocode import resolve_location
from linksy.search.needs import match_needs
from linksy.search.proximity import RingResult, rank_by_distance, ring_search
from linksy.search.service_area import filter_by_service_area
from linksy.search.summarizer import no_needs_message, summarize

logger = structlog.get_logger(__name__)

# Internal fields never sent to the widget
_PRIVATE_PROVIDER_FIELDS = ("llm_context_card",)


def _for_client(provider: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in provider.items() if k not in _PRIVATE_PROVIDER_FIELDS}


def _find_nearby(location: Optional[dict[str, float]], db: Session) -> Optional[RingResult]:
    """Ring search over PostGIS. A lookup failure drops the geo constraint."""
    try:
        return ring_search(
            location,
            lambda lat, lng, meters: dal.get_nearby_provider_ids(lat, lng, meters, db=db),
            radii_miles=settings.SEARCH_RADII_MILES,
            min_providers=settings.SEARCH_MIN_NEARBY_PROVIDERS,
        )
    except RuntimeError as exc:
        logger.warning("ring_search_failed", error=str(exc))
        return None


async def run_search(
    query: Optional[str],
    *,
    db: Session,
    openai_client: AsyncOpenAI,
    location: Optional[dict[str, float]] = None,
    zip_code: Optional[str] = None,
    host_provider_id: Optional[str] = None,
    session_id: Optional[str] = None,
    client_ip: str = "unknown",
    redis_client: Optional[Redis] = None,
) -> dict[str, Any]:
    """
    Run a provider search and return the response body.

    Raises:
        InvalidQueryError: Blank query.
        HostAccessError: Unknown or inactive host.
        QuotaExceededError: Host monthly budget spent.
        RateLimitedError: Host/IP window full.
        UpstreamSearchError: Embedding, need matching or provider retrieval failed.
    """
    start_time = time.time()
    trimmed = (query or "").strip()
    if not trimmed:
        raise InvalidQueryError("Query is required")

    zip_code = zip_code.strip() if zip_code and zip_code.strip() else None
    log = logger.bind(query=trimmed[:100], host_provider_id=host_provider_id)

    # 1. Host gate: exclusion terms first, then validity, budget, rate limit
    if host_provider_id:
        host = dal.get_host(host_provider_id, db=db)
        if host is not None and is_query_excluded(query, host["excluded_search_terms"]):
            log.info("search_filtered")
            return filtered_response(query)
        check_host_access(host)
        check_token_budget(host)
        check_host_rate_limit(host, client_ip, redis_client)

    # 2. Caller location
    resolved = await resolve_location(location, zip_code, redis_client)

    # 3. Needs
    try:
        vector, tokens_used = await embed_query(trimmed, openai_client)
        needs = match_needs(vector, db=db)
    except Exception as exc:
        log.error("need_search_failed", error_type=type(exc).__name__, error=str(exc))
        raise UpstreamSearchError("Failed to search needs") from exc

    if not needs:
        log.info("search_no_needs_matched")
        return {
            "query": query,
            "needs": [],
            "providers": [],
            "message": no_needs_message(query),
            "searchRadiusMiles": None,
            "sessionId": session_id,
        }

    # 4. Nearby providers
    ring = _find_nearby(resolved, db)
    radius_miles = ring.radius_miles if ring else None
    nearby_ids = ring.provider_ids if ring and ring.provider_ids else None

    # 5. Providers offering the matched needs
    try:
        providers = dal.get_providers_for_needs(
            [n["id"] for n in needs],
            db=db,
            provider_ids=nearby_ids,
            limit=settings.PROVIDER_FETCH_LIMIT,
        )
    except (RuntimeError, ValueError) as exc:
        log.error("provider_fetch_failed", error=str(exc))
        raise UpstreamSearchError("Failed to fetch providers") from exc

    # 6–7. Service area, distance, top N
    included, excluded_by_zip = filter_by_service_area(providers, zip_code)
    top_providers = rank_by_distance(included, resolved)[: settings.SEARCH_RESULT_LIMIT]

    # 8. Conversational message
    message = await summarize(query, needs, top_providers, resolved is not None, radius_miles, openai_client)

    # 9. Accounting
    active_session_id = record_search_usage(
        db=db,
        query=query,
        tokens_used=tokens_used,
        session_id=session_id,
        host_provider_id=host_provider_id,
        location=resolved,
        zip_code=zip_code,
        radius_miles=radius_miles,
    )

    response: dict[str, Any] = {
        "query": query,
        "needs": needs,
        "providers": [_for_client(p) for p in top_providers],
        "message": message,
        "searchRadiusMiles": radius_miles,
        "sessionId": active_session_id,
    }
    if zip_code:
        response["clientZipCode"] = zip_code
        if excluded_by_zip:
            response["excludedByZip"] = excluded_by_zip

    log.info(
        "search_completed",
        need_count=len(needs),
        provider_count=len(top_providers),
        excluded_by_zip=len(excluded_by_zip),
        radius_miles=radius_miles,
        has_location=resolved is not None,
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    return response
