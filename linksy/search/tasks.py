"""
Linksy Search Celery Tasks

Tasks:
    increment_session_usage_task — Atomic session message/token increment
    increment_host_usage_task    — Atomic host monthly usage increment
    add_service_clicked_task     — Record a provider click on a session
    index_needs_task             — Embed needs missing a vector
    geocode_locations_task       — Geocode locations missing coordinates
    reset_host_usage_task        — Monthly reset of host counters (beat)

Rules:
    - Usage tasks are fire-and-forget from the search path: they log failures
      and return, never retry, so a counter is never incremented twice
    - index_needs_task retries only on transient OpenAI errors
    - Every task opens and closes its own session
"""

import time
from datetime import datetime, timezone

import openai
import structlog

from linksy.celery_app import celery
from linksy.config import settings
from linksy.db import dal
from linksy.db.session import SessionLocal

logger = structlog.get_logger(__name__)


@celery.task(name="linksy.search.tasks.increment_session_usage_task")
def increment_session_usage_task(session_id: str, tokens: int) -> bool:
    """Add one message and *tokens* tokens to a search session."""
    db = SessionLocal()
    try:
        updated = dal.increment_session_usage(session_id, tokens, db=db)
        if not updated:
            logger.warning("session_usage_increment_missing_session", session_id=session_id)
        return bool(updated)
    except (RuntimeError, ValueError) as exc:
        logger.error("session_usage_increment_failed", session_id=session_id, error=str(exc))
        return False
    finally:
        db.close()


@celery.task(name="linksy.search.tasks.increment_host_usage_task")
def increment_host_usage_task(host_provider_id: str, tokens: int) -> bool:
    """Add *tokens* to a host's monthly usage and count one search."""
    db = SessionLocal()
    try:
        return bool(dal.increment_host_usage(host_provider_id, tokens, db=db))
    except (RuntimeError, ValueError) as exc:
        logger.error("host_usage_increment_failed", host_provider_id=host_provider_id, error=str(exc))
        return False
    finally:
        db.close()


@celery.task(name="linksy.search.tasks.add_service_clicked_task")
def add_service_clicked_task(session_id: str, provider_id: str) -> bool:
    """Append a clicked provider to a session's ``services_clicked``."""
    db = SessionLocal()
    try:
        return dal.add_service_clicked(session_id, provider_id, db=db)
    except (RuntimeError, ValueError) as exc:
        logger.error("service_clicked_update_failed", session_id=session_id, error=str(exc))
        return False
    finally:
        db.close()


@celery.task(
    name="linksy.search.tasks.index_needs_task",
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    autoretry_for=(openai.APIConnectionError, openai.RateLimitError),
    retry_backoff=True,
    retry_jitter=True,
)
def index_needs_task(self, force: bool = False) -> dict:
    """
    Embed needs that lack a vector, or all active needs with *force*.

    Retry policy:
        - Retries on APIConnectionError and RateLimitError
        - AuthenticationError / NotFoundError are permanent and not retried
    """
    start_time = time.time()
    logger.info("index_needs_task_started", force=force, retry_count=self.request.retries)

    db = SessionLocal()
    try:
        openai_client = openai.OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS)

        from linksy.search.indexer import reindex_needs

        result = reindex_needs(db, openai_client, force=force)
        logger.info(
            "index_needs_task_complete",
            **result,
            elapsed_seconds=round(time.time() - start_time, 3),
        )
        return result

    except (openai.AuthenticationError, openai.NotFoundError) as exc:
        logger.error("index_needs_task_permanent_error", error_type=type(exc).__name__, error=str(exc))
        return {"total": 0, "succeeded": 0, "failed": 0, "error": str(exc)}

    except (openai.APIConnectionError, openai.RateLimitError):
        raise

    except Exception as exc:
        logger.error("index_needs_task_unexpected_error", error_type=type(exc).__name__, error=str(exc))
        return {"total": 0, "succeeded": 0, "failed": 0, "error": str(exc)}

    finally:
        db.close()


@celery.task(name="linksy.search.tasks.geocode_locations_task")
def geocode_locations_task() -> dict:
    """Geocode every location that has an address but no coordinates yet."""
    db = SessionLocal()
    try:
        from linksy.search.indexer import geocode_locations

        return geocode_locations(db)
    except Exception as exc:
        logger.error("geocode_locations_task_failed", error_type=type(exc).__name__, error=str(exc))
        return {"total": 0, "geocoded": 0, "failed": 0, "error": str(exc)}
    finally:
        db.close()


@celery.task(name="linksy.search.tasks.reset_host_usage_task")
def reset_host_usage_task() -> int:
    """Zero host monthly counters at the start of each calendar month (UTC)."""
    now = datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    db = SessionLocal()
    try:
        reset = dal.reset_host_monthly_usage(month_start, db=db)
        logger.info("host_usage_reset", hosts_reset=reset, month_start=month_start.isoformat())
        return reset
    except RuntimeError as exc:
        logger.error("host_usage_reset_failed", error=str(exc))
        return 0
    finally:
        db.close()
