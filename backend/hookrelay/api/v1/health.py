import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response
from sqlalchemy import text

from hookrelay.config import settings
from hookrelay.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Basic liveness probe that returns HTTP 200 if the application process is running.",
)
async def liveness():
    """Liveness probe, returns 200 if the process is running."""
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Readiness probe that verifies database connectivity and that the delivery engine has started. Returns HTTP 503 if either check fails.",
)
async def readiness(request: Request):
    """Readiness probe, checks the database and the delivery engine."""
    checks = {}

    try:
        from hookrelay.core.database import engine

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    if getattr(request.app.state, "delivery_engine", None) is not None:
        checks["delivery_engine"] = "ok"
    else:
        checks["delivery_engine"] = "not started"

    all_ok = all(v == "ok" for v in checks.values())
    status_code = 200 if all_ok else 503

    return Response(
        content=json.dumps(
            {"status": "ready" if all_ok else "not ready", "checks": checks}
        ),
        status_code=status_code,
        media_type="application/json",
    )


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled.",
)
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
