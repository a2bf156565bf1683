"""
Linksy Search API

FastAPI application entry point for the provider search service.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from linksy.config import settings
from linksy.logging_config import configure_logging

REQUEST_ID_HEADER = "X-Request-ID"

logger = structlog.get_logger(__name__)


def configure_sentry() -> None:
    """Initialize Sentry error tracking if SENTRY_DSN is configured."""
    if not settings.SENTRY_DSN:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.celery import CeleryIntegration
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                CeleryIntegration(),
            ],
            traces_sample_rate=0.1,
            send_default_pii=False,  # search queries and caller IPs stay out of Sentry
            environment="development" if settings.DEBUG else "production",
        )
        logger.info("sentry_initialized", dsn_prefix=settings.SENTRY_DSN[:20] + "...")
    except Exception as e:
        logger.warning("sentry_init_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    configure_sentry()
    logger.info("application_startup", app_name=app.title, debug=settings.DEBUG)

    yield

    logger.info("application_shutdown")


app = FastAPI(
    title="Linksy Search API",
    description="AI-assisted provider search for the Linksy referral directory",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# Host widgets call the API from third-party origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=[
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
        REQUEST_ID_HEADER,
    ],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request id to every log record emitted while serving the request."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start = time.perf_counter()
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "request_completed",
        status_code=response.status_code,
        elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return response


@app.get("/health", tags=["Health"])
async def health_check() -> JSONResponse:
    """Liveness probe for load balancers. Does not touch the database."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# =============================================================================
# API Routers
# =============================================================================
from linksy.api.v1.admin import router as admin_router  # noqa: E402
from linksy.api.v1.crisis import router as crisis_router  # noqa: E402
from linksy.api.v1.interactions import router as interactions_router  # noqa: E402
from linksy.api.v1.search import router as search_router  # noqa: E402

app.include_router(search_router, prefix="/api/v1")
app.include_router(crisis_router, prefix="/api/v1")
app.include_router(interactions_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
