"""
Linksy Celery Application Configuration

Configures Celery with Redis as broker. Used for fire-and-forget usage
accounting from the search path and for index maintenance jobs.

Usage:
    # Start worker
    celery -A linksy.celery_app.celery worker --loglevel=info

    # Start beat (for scheduled tasks)
    celery -A linksy.celery_app.celery beat --loglevel=info
"""

import structlog
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging, task_postrun, task_prerun

from linksy.config import settings
from linksy.logging_config import configure_logging

celery = Celery(
    "linksy",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["linksy.search.tasks"],
)

celery.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,

    # Result backend settings
    result_expires=86400,  # 24 hours
    result_extended=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Usage counters are small and frequent; index jobs are slow and rare
    task_routes={
        "linksy.search.tasks.increment_session_usage_task": {"queue": "usage"},
        "linksy.search.tasks.increment_host_usage_task": {"queue": "usage"},
        "linksy.search.tasks.add_service_clicked_task": {"queue": "usage"},
        "linksy.search.tasks.index_needs_task": {"queue": "indexing"},
        "linksy.search.tasks.geocode_locations_task": {"queue": "indexing"},
        "linksy.search.tasks.reset_host_usage_task": {"queue": "default"},
    },
    task_default_queue="default",

    # Task time limits (in seconds)
    task_soft_time_limit=600,
    task_time_limit=900,

    # Retry settings
    task_default_retry_delay=60,
    task_max_retries=3,

    # Beat schedule (periodic tasks)
    beat_schedule={
        "reset-host-monthly-usage": {
            "task": "linksy.search.tasks.reset_host_usage_task",
            "schedule": crontab(minute=5, hour=0, day_of_month=1),
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    """Keep Celery from installing its own handlers; workers log JSON like the API."""
    configure_logging()


@task_prerun.connect
def _bind_task_context(task_id=None, task=None, **kwargs):
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(task_id=task_id, task_name=task.name if task else None)


@task_postrun.connect
def _clear_task_context(**kwargs):
    structlog.contextvars.clear_contextvars()
