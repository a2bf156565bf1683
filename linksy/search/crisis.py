"""
Linksy Crisis Detection

Scans a message for crisis keywords so the widget can show emergency
resources alongside (not instead of) search results.
"""

from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from linksy.db import dal

logger = structlog.get_logger(__name__)

SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


def match_crisis_keywords(message: str, keywords: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """
    Return the most severe keyword found in *message*, or ``None``.

    Matching is a case-insensitive substring test. Among equally severe
    matches the longest keyword wins.
    """
    lowered = message.lower()
    matches = [kw for kw in keywords if kw["keyword"] and kw["keyword"].lower() in lowered]
    if not matches:
        return None

    best = max(matches, key=lambda kw: (SEVERITY_RANK.get(kw["severity"], 0), len(kw["keyword"])))
    return {
        "crisis_type": best["crisis_type"],
        "severity": best["severity"],
        "matched_keyword": best["keyword"],
        "response_template": best["response_template"],
        "emergency_resources": best["emergency_resources"],
    }


async def detect_crisis(
    message: str,
    *,
    db: Session,
    site_id: Optional[str] = None,
    host_provider_id: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """Load the applicable keywords and match *message* against them."""
    keywords = dal.get_crisis_keywords(db=db, site_id=site_id, host_provider_id=host_provider_id)
    result = match_crisis_keywords(message, keywords)
    if result is not None:
        logger.info("crisis_detected", crisis_type=result["crisis_type"], severity=result["severity"])
    return result
