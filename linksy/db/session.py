"""
Linksy Database Session Management

One pooled engine shared by the API workers and the Celery tasks. Every
connection identifies itself as ``linksy-search`` and carries a statement
timeout so a slow radius or vector query cannot hold a worker.

Dependencies:
    - get_db(): Yields a session for request handlers
    - SessionLocal: Session factory used directly by Celery tasks
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from linksy.config import settings

engine = create_engine(
    settings.DATABASE_URL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_pre_ping=True,
    connect_args={
        "application_name": "linksy-search",
        "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
    },
)

# expire_on_commit=False: DAL functions return dicts built after commit
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Yield a session for one request and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
