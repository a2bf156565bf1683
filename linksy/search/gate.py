"""
Linksy Search Gate

Checks run before any paid API call when a search comes from a host widget:
excluded terms, host validity, monthly token budget and rate limit.

Functions:
    is_query_excluded     — Case-insensitive substring match on excluded terms
    filtered_response     — The canned response for an excluded query
    check_host_access     — Raise HostAccessError unless the host may embed
    check_token_budget    — Raise QuotaExceededError once the budget is spent
    check_host_rate_limit — Raise RateLimitedError when the window is full
"""

import time
from typing import Any, Optional

import structlog
from redis import Redis

from linksy.config import settings
from linksy.search.errors import HostAccessError, QuotaExceededError, RateLimitedError
from linksy.search.rate_limit import RateLimitResult, check_rate_limit

logger = structlog.get_logger(__name__)

EXCLUDED_QUERY_MESSAGE = (
    "I'm sorry, but I can't help with that request here. "
    "For other questions, please contact 211 for assistance."
)


def is_query_excluded(query: str, excluded_terms: Optional[list[str]]) -> bool:
    """True if the lowercased query contains any non-blank excluded term."""
    lowered = query.lower()
    return any(term.strip() and term.strip().lower() in lowered for term in (excluded_terms or []))


def filtered_response(query: str) -> dict[str, Any]:
    """Response returned for an excluded query. No search work is done."""
    return {
        "query": query,
        "needs": [],
        "providers": [],
        "message": EXCLUDED_QUERY_MESSAGE,
        "filtered": True,
    }


def check_host_access(host: Optional[dict[str, Any]]) -> None:
    """The host must exist, be active, be flagged as host and have its embed enabled."""
    if host is None:
        raise HostAccessError("Invalid host")
    if not (host["is_active"] and host["is_host"] and host["host_embed_active"]):
        logger.info("host_access_denied", host_provider_id=host["id"])
        raise HostAccessError("Host is not active")


def check_token_budget(host: dict[str, Any]) -> None:
    """Reject once tokens used this month reach a configured budget."""
    budget = host.get("host_monthly_token_budget")
    if budget is None:
        return
    used = host.get("host_tokens_used_this_month") or 0
    if used >= budget:
        logger.info("host_budget_exceeded", host_provider_id=host["id"], used=used, budget=budget)
        raise QuotaExceededError("Monthly search budget exceeded for this host")


def host_rate_limit(host: dict[str, Any]) -> int:
    """Requests per minute configured for the host widget, or the default."""
    config = host.get("host_widget_config") or {}
    limit = config.get("search_rate_limit_per_minute")
    if isinstance(limit, int) and limit > 0:
        return limit
    return settings.SEARCH_RATE_LIMIT_PER_MINUTE


def check_host_rate_limit(
    host: dict[str, Any],
    client_ip: str,
    redis_client: Optional[Redis],
) -> RateLimitResult:
    """Apply the sliding-window limit keyed by (host, caller IP)."""
    result = check_rate_limit(
        host["id"],
        client_ip,
        host_rate_limit(host),
        settings.SEARCH_RATE_LIMIT_WINDOW_SECONDS,
        redis_client,
        now=time.time(),
    )
    if not result.success:
        raise RateLimitedError(
            "Too many requests. Please try again later.",
            limit=result.limit,
            remaining=result.remaining,
            reset=result.reset,
        )
    return result
