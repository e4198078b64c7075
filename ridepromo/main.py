import logging
import time
import uuid

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.middleware import SlowAPIMiddleware

from ridepromo.api.errors import register_exception_handlers
from ridepromo.api.v1 import coupons
from ridepromo.core.config import settings
from ridepromo.core.logging_config import configure_logging
from ridepromo.core.rate_limiter import limiter
from ridepromo.db.init_db import init_db
from ridepromo.db.session import engine

API_VERSION = "1.0.0"

configure_logging()
logger = structlog.get_logger(__name__)

# Error monitoring is a production-only concern.
if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
        logging.info("Sentry initialized")
    except Exception as exc:
        logging.warning("Sentry disabled: %s", exc)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=API_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=None,
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.BACKEND_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Process-Time", "X-Correlation-ID"],
    max_age=3600,
)
register_exception_handlers(app)


@app.on_event("startup")
def create_tables_outside_production():
    """Local and test databases get their tables on boot; production schemas are migrated separately."""
    if settings.ENVIRONMENT != "production":
        init_db(engine)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a correlation id for the request's log lines and report timing."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    started = time.perf_counter()
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
    )
    try:
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    response.headers["X-Process-Time"] = f"{elapsed:.6f}"
    response.headers["X-Correlation-ID"] = correlation_id
    return response


app.include_router(coupons.router, prefix=f"{settings.API_V1_STR}/coupons", tags=["Coupons"])


@app.get("/health")
def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT, "version": API_VERSION}


@app.get("/health/database")
def database_health_check():
    try:
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
    except Exception as exc:
        logger.warning("database_health_check_failed", error_type=type(exc).__name__)
        return {"status": "unhealthy", "reason": "Database connectivity check failed"}
    return {"status": "healthy", "pool": engine.pool.__class__.__name__}
