"""
Linksy Search API Router

Mount point: /api/v1

Endpoints:
    POST /search — Natural-language provider search for the public and host widgets

Rules:
    - No auth: host widgets are gated by host id, budget and rate limit instead
    - Crisis detection runs concurrently with the search and never fails it
    - Domain errors map to their HTTP status; anything else is a logged 500
    - Log endpoint name, truncated query, and response time via structlog
"""

import asyncio
import time
from typing import Any, Optional

import openai
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from redis import Redis
from sqlalchemy.orm import Session

from linksy.config import settings
from linksy.db.session import get_db
from linksy.search.crisis import detect_crisis
from linksy.search.errors import RateLimitedError, SearchError
from linksy.search.pipeline import run_search

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Search"])


# ── Helpers ────────────────────────────────────────────────────────────────

def _get_openai_client() -> openai.AsyncOpenAI:
    """Create an async OpenAI client from settings."""
    return openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS)


def _get_redis_client() -> Optional[Redis]:
    """
    Create a Redis client for the rate limiter and geocode cache.
    Returns None if Redis is unavailable; both degrade without it.
    """
    try:
        client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        client.ping()
        return client
    except Exception as exc:
        logger.warning("redis_unavailable_for_search", error=str(exc))
        return None


def _client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _crisis_or_none(query: str, db: Session, host_provider_id: Optional[str]) -> Optional[dict[str, Any]]:
    if not query or not query.strip():
        return None
    try:
        return await detect_crisis(
            query,
            db=db,
            site_id=settings.LINKSY_SITE_ID,
            host_provider_id=host_provider_id,
        )
    except (RuntimeError, ValueError) as exc:
        logger.warning("crisis_check_failed", error=str(exc))
        return None


# ── Request schema ─────────────────────────────────────────────────────────

class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = Field(None, max_length=2000, description="What the person needs help with")
    location: Optional[Coordinates] = None
    zip_code: Optional[str] = Field(None, alias="zipCode", max_length=20)
    host_provider_id: Optional[str] = Field(None, alias="hostProviderId")
    session_id: Optional[str] = Field(None, alias="sessionId")


# ── POST /search ───────────────────────────────────────────────────────────

@router.post(
    "/search",
    summary="Search providers by natural language",
    response_description="Matched needs, ranked providers and a conversational message",
)
async def search_endpoint(
    body: SearchRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Match the query to needs, find providers offering them near the caller,
    and describe the results conversationally.
    """
    start_time = time.time()
    log = logger.bind(endpoint="search", query=(body.query or "")[:100])

    try:
        search_result, crisis = await asyncio.gather(
            run_search(
                body.query,
                db=db,
                openai_client=_get_openai_client(),
                location=body.location.model_dump() if body.location else None,
                zip_code=body.zip_code,
                host_provider_id=body.host_provider_id,
                session_id=body.session_id,
                client_ip=_client_ip(request),
                redis_client=_get_redis_client() if (body.host_provider_id or body.zip_code) else None,
            ),
            _crisis_or_none(body.query or "", db, body.host_provider_id),
        )
    except RateLimitedError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=exc.message,
            headers=exc.headers(now=int(time.time())),
        )
    except SearchError as exc:
        if exc.status_code >= 500:
            log.error("search_upstream_error", error=exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    except Exception as exc:
        log.error("search_error", error_type=type(exc).__name__, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while searching",
        )

    log.info(
        "search_response",
        provider_count=len(search_result["providers"]),
        crisis_detected=crisis is not None,
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    return {**search_result, "crisis": crisis}
