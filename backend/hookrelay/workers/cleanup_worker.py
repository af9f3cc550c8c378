import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import settings
from hookrelay.models.webhook_delivery import TERMINAL_STATUSES, WebhookDelivery
from hookrelay.models.webhook_incoming_log import WebhookIncomingLog
from hookrelay.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def purge_webhook_history(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime,
    delivery_retention_days: int,
    inbound_retention_days: int,
) -> dict[str, int]:
    """Delete finished deliveries and processed inbound logs past their retention window.

    Pending deliveries and unprocessed inbound logs are kept whatever their
    age. An unprocessed log is also the dedup record for its event.
    """
    delivery_cutoff = now - timedelta(days=delivery_retention_days)
    inbound_cutoff = now - timedelta(days=inbound_retention_days)

    async with session_factory() as db:
        result = await db.execute(
            delete(WebhookDelivery).where(
                WebhookDelivery.created_at < delivery_cutoff,
                WebhookDelivery.status.in_(TERMINAL_STATUSES),
            )
        )
        delivery_count = result.rowcount or 0

        result = await db.execute(
            delete(WebhookIncomingLog).where(
                WebhookIncomingLog.received_at < inbound_cutoff,
                WebhookIncomingLog.processed == True,  # noqa: E712
            )
        )
        inbound_count = result.rowcount or 0

        await db.commit()

    if delivery_count:
        logger.info(f"Cleaned up {delivery_count} old webhook deliveries")
    if inbound_count:
        logger.info(f"Cleaned up {inbound_count} old inbound webhook logs")
    return {"deliveries": delivery_count, "inbound_logs": inbound_count}


@celery_app.task(name="hookrelay.workers.cleanup_worker.cleanup_webhook_history", bind=True)
def cleanup_webhook_history(self):
    """Apply the retention settings to delivery and inbound log history."""

    async def _do_cleanup():
        from hookrelay.core.database import create_worker_session_factory

        session_factory, db_engine = create_worker_session_factory()
        try:
            return await purge_webhook_history(
                session_factory,
                now=datetime.now(timezone.utc),
                delivery_retention_days=settings.DELIVERY_RETENTION_DAYS,
                inbound_retention_days=settings.INBOUND_LOG_RETENTION_DAYS,
            )
        except Exception as e:
            logger.error(f"Cleanup task failed: {e}")
            raise
        finally:
            await db_engine.dispose()

    return _run_async(_do_cleanup())
