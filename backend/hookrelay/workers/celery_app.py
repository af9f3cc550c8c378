import logging

import sentry_sdk
from celery import Celery
from celery.signals import worker_shutting_down

from hookrelay.config import settings

# Initialize Sentry for Celery workers
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"hookrelay@{settings.APP_VERSION}",
        send_default_pii=False,
    )

logger = logging.getLogger(__name__)

# Delivery retries are timed in-process by the API; Celery only runs housekeeping.
celery_app = Celery(
    "hookrelay",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "hookrelay.workers.cleanup_worker.*": {"queue": "maintenance"},
    },
    beat_schedule={
        "cleanup-webhook-history-daily": {
            "task": "hookrelay.workers.cleanup_worker.cleanup_webhook_history",
            "schedule": 86400.0,  # Every 24 hours
        },
    },
    worker_max_tasks_per_child=100,
)

celery_app.conf.include = [
    "hookrelay.workers.cleanup_worker",
]


@worker_shutting_down.connect
def on_worker_shutting_down(sig=None, how=None, exitcode=None, **kw):
    """Log when a worker is shutting down."""
    logger.info(f"Worker shutting down (signal={sig}, how={how}, exitcode={exitcode})")
