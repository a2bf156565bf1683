"""
Linksy Interaction Tracking API Router

Mount point: /api/v1

Endpoints:
    POST /interactions — Record a click on a provider card
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from linksy.db import dal
from linksy.db.session import get_db
from linksy.search.tasks import add_service_clicked_task

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Interactions"])

INTERACTION_TYPES = frozenset({"phone_click", "website_click", "directions_click", "profile_view"})

# Clicks that count as the person reaching out to a provider
SERVICE_CLICK_TYPES = frozenset({"phone_click", "website_click"})


class InteractionRequest(BaseModel):
    provider_id: Optional[str] = None
    interaction_type: Optional[str] = None
    session_id: Optional[str] = None
    need_id: Optional[str] = None


@router.post("/interactions", summary="Record a provider card interaction")
async def record_interaction_endpoint(
    body: InteractionRequest,
    db: Session = Depends(get_db),
):
    if not body.provider_id or not body.interaction_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="provider_id and interaction_type are required",
        )
    if body.interaction_type not in INTERACTION_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid interaction_type: {body.interaction_type}",
        )

    try:
        dal.record_interaction(
            db=db,
            provider_id=body.provider_id,
            interaction_type=body.interaction_type,
            session_id=body.session_id,
            need_id=body.need_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except Exception as exc:
        logger.error("interaction_record_error", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record interaction",
        )

    if body.session_id and body.interaction_type in SERVICE_CLICK_TYPES:
        try:
            add_service_clicked_task.delay(body.session_id, body.provider_id)
        except Exception as exc:
            logger.warning("service_clicked_enqueue_failed", error=str(exc))

    return {"ok": True}
