"""
Linksy Usage & Session Accounting

Persists search telemetry after the results are computed. Nothing here
may change the search response: every failure is logged and absorbed.

A new conversation gets its session row written inline, because the caller
needs the id back. Everything else (session and host counter increments)
is enqueued to Celery and performed as a single server-side UPDATE.
"""

from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from linksy.config import settings
from linksy.db import dal
from linksy.search.tasks import increment_host_usage_task, increment_session_usage_task

logger = structlog.get_logger(__name__)


def _enqueue(task, *args: Any) -> bool:
    """Enqueue a Celery task, logging (not raising) when the broker is unavailable."""
    try:
        task.delay(*args)
        return True
    except Exception as exc:
        logger.warning("usage_task_enqueue_failed", task=task.name, error=str(exc))
        return False


def record_search_usage(
    *,
    db: Session,
    query: str,
    tokens_used: int,
    session_id: Optional[str] = None,
    host_provider_id: Optional[str] = None,
    location: Optional[dict[str, float]] = None,
    zip_code: Optional[str] = None,
    radius_miles: Optional[int] = None,
) -> Optional[str]:
    """
    Record one search against its session and host.

    Returns:
        The session id to hand back to the caller: the supplied one, the id
        of a newly created session, or ``None`` if creating it failed.
    """
    active_session_id = session_id

    if not session_id:
        try:
            active_session_id = dal.create_search_session(
                db=db,
                site_id=settings.LINKSY_SITE_ID,
                initial_query=query,
                tokens_used=tokens_used,
                model_used=settings.EMBEDDING_MODEL,
                location=location,
                zip_code=zip_code,
                host_provider_id=host_provider_id,
                search_radius_miles=radius_miles,
            )
        except (RuntimeError, ValueError) as exc:
            logger.warning("session_create_failed", error=str(exc))
            active_session_id = None
    else:
        _enqueue(increment_session_usage_task, session_id, tokens_used)

    if host_provider_id:
        _enqueue(increment_host_usage_task, host_provider_id, tokens_used)

    return active_session_id
