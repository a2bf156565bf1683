"""
Linksy Celery Worker Entry Point

Start the worker:
    celery -A celery_worker.celery worker --loglevel=info -Q usage,indexing,default

Start the beat scheduler:
    celery -A celery_worker.celery beat --loglevel=info

Start both (dev only):
    celery -A celery_worker.celery worker --beat --loglevel=info -Q usage,indexing,default
"""

from linksy.celery_app import celery  # noqa: F401

import linksy.search.tasks  # noqa: F401
