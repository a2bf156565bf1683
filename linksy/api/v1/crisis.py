"""
Linksy Crisis Check API Router

Mount point: /api/v1

Endpoints:
    POST /crisis/check — Test a message against the site's crisis keywords
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from linksy.config import settings
from linksy.db.session import get_db
from linksy.search.crisis import detect_crisis

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/crisis", tags=["Crisis"])


class CrisisCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=2000)
    host_provider_id: Optional[str] = Field(None, alias="hostProviderId")


@router.post("/check", summary="Check a message for crisis keywords")
async def check_crisis_endpoint(
    body: CrisisCheckRequest,
    db: Session = Depends(get_db),
):
    """Returns ``{"detected": bool, "result": {...} | null}``."""
    try:
        result = await detect_crisis(
            body.message,
            db=db,
            site_id=settings.LINKSY_SITE_ID,
            host_provider_id=body.host_provider_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except Exception as exc:
        logger.error("crisis_check_error", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Crisis check failed",
        )

    return {"detected": result is not None, "result": result}
