"""
Linksy Index Maintenance API Router

Mount point: /api/v1/admin

Endpoints:
    POST /needs/reindex  — Enqueue need embedding generation
    GET  /context-cards  — Context card coverage for active providers
    POST /context-cards  — Build missing (or all, with force) context cards
    GET  /geocode        — Geocoding coverage for provider locations
    POST /geocode        — Enqueue geocoding of ungeocoded locations

Rules:
    - Every endpoint requires an admin JWT
    - Slow work (embedding, geocoding) is enqueued; 503 if the broker is down
"""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from linksy.api.auth import get_current_admin_user
from linksy.db import dal
from linksy.db.session import get_db

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


class ForceRequest(BaseModel):
    force: bool = False


# ── POST /needs/reindex ────────────────────────────────────────────────────

@router.post(
    "/needs/reindex",
    summary="Regenerate need embeddings (admin only)",
    status_code=status.HTTP_202_ACCEPTED,
)
async def reindex_needs_endpoint(
    body: ForceRequest = ForceRequest(),
    admin: dict = Depends(get_current_admin_user),
):
    log = logger.bind(endpoint="reindex_needs", user_id=admin.get("sub"), force=body.force)

    try:
        from linksy.search.tasks import index_needs_task
        index_needs_task.delay(force=body.force)
    except Exception as exc:
        log.error("reindex_enqueue_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to enqueue re-indexing task. Please try again later.",
        )

    log.info("reindex_enqueued")
    return {"message": "Need re-indexing started", "force": body.force}


# ── /context-cards ─────────────────────────────────────────────────────────

@router.get("/context-cards", summary="Context card coverage (admin only)")
async def context_card_stats_endpoint(
    db: Session = Depends(get_db),
    admin: dict = Depends(get_current_admin_user),
):
    try:
        return dal.get_context_card_stats(db=db)
    except Exception as exc:
        logger.error("context_card_stats_error", error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load stats")


@router.post("/context-cards", summary="Generate provider context cards (admin only)")
async def generate_context_cards_endpoint(
    body: ForceRequest = ForceRequest(),
    db: Session = Depends(get_db),
    admin: dict = Depends(get_current_admin_user),
):
    """Builds cards synchronously; rendering is local string work, no API calls."""
    start_time = time.time()
    try:
        from linksy.search.indexer import generate_context_cards
        result = generate_context_cards(db, force=body.force)
    except Exception as exc:
        logger.error("context_card_generation_error", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate context cards",
        )

    logger.info(
        "context_cards_response",
        user_id=admin.get("sub"),
        elapsed_seconds=round(time.time() - start_time, 3),
        **result,
    )
    return result


# ── /geocode ───────────────────────────────────────────────────────────────

@router.get("/geocode", summary="Location geocoding coverage (admin only)")
async def geocode_stats_endpoint(
    db: Session = Depends(get_db),
    admin: dict = Depends(get_current_admin_user),
):
    try:
        return dal.get_geocode_stats(db=db)
    except Exception as exc:
        logger.error("geocode_stats_error", error=str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load stats")


@router.post(
    "/geocode",
    summary="Geocode provider locations (admin only)",
    status_code=status.HTTP_202_ACCEPTED,
)
async def geocode_locations_endpoint(
    admin: dict = Depends(get_current_admin_user),
):
    try:
        from linksy.search.tasks import geocode_locations_task
        geocode_locations_task.delay()
    except Exception as exc:
        logger.error("geocode_enqueue_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to enqueue geocoding task. Please try again later.",
        )

    logger.info("geocode_enqueued", user_id=admin.get("sub"))
    return {"message": "Geocoding started"}
