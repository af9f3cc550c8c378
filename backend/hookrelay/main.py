import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from hookrelay.api.v1.router import api_router
from hookrelay.api.v1.health import router as health_router
from hookrelay.config import settings
from hookrelay.core.database import async_session
from hookrelay.core.logging_config import configure_logging
from hookrelay.middleware.request_id import RequestIDMiddleware
from hookrelay.services.container import WebhookServices

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"hookrelay@{settings.APP_VERSION}",
        send_default_pii=False,
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    services = WebhookServices.build(async_session)
    app.state.webhook_services = services
    app.state.delivery_engine = services.engine
    app.state.webhook_receiver = services.receiver

    # Retry timers die with the process; resume anything that came due while
    # we were down before taking new traffic.
    resumed = await services.engine.process_pending_retries()
    if resumed:
        logger.info(f"Resumed {resumed} overdue webhook deliveries")

    yield

    logger.info("Shutting down...")
    await services.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="HookRelay - signed outgoing webhooks with retries, and "
    "idempotent ingestion of incoming provider webhooks.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request ID middleware (must be added before other middleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router)

# Health & metrics routes (no /v1 prefix)
app.include_router(health_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }
