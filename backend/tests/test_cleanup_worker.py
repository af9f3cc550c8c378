"""Tests for webhook history retention."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from hookrelay.core.database import async_session
from hookrelay.models.webhook_delivery import WebhookDelivery
from hookrelay.models.webhook_incoming_log import WebhookIncomingLog
from hookrelay.workers.cleanup_worker import cleanup_webhook_history, purge_webhook_history


class TestPurgeWebhookHistory:
    @pytest.mark.asyncio
    async def test_only_old_finished_rows_removed(
        self, clock, make_subscription, make_delivery
    ):
        subscription = await make_subscription()
        old = clock.now() - timedelta(days=45)
        recent = clock.now() - timedelta(days=5)

        old_delivered = await make_delivery(subscription, status="delivered", created_at=old)
        old_failed = await make_delivery(subscription, status="failed", created_at=old)
        old_pending = await make_delivery(subscription, status="pending", created_at=old)
        fresh = await make_delivery(subscription, status="delivered", created_at=recent)

        async with async_session() as db:
            db.add_all(
                [
                    WebhookIncomingLog(
                        provider="acme", event_id="old", event_type="x", payload="",
                        processed=True,
                        received_at=clock.now() - timedelta(days=120),
                    ),
                    WebhookIncomingLog(
                        provider="acme", event_id="old-unprocessed", event_type="x",
                        payload="", processed=False,
                        received_at=clock.now() - timedelta(days=120),
                    ),
                    WebhookIncomingLog(
                        provider="acme", event_id="new", event_type="x", payload="",
                        received_at=clock.now() - timedelta(days=10),
                    ),
                ]
            )
            await db.commit()

        counts = await purge_webhook_history(
            async_session,
            now=clock.now(),
            delivery_retention_days=30,
            inbound_retention_days=90,
        )

        assert counts == {"deliveries": 2, "inbound_logs": 1}
        async with async_session() as db:
            remaining = set((await db.execute(select(WebhookDelivery.id))).scalars().all())
            logs = (await db.execute(select(WebhookIncomingLog.event_id))).scalars().all()
        assert remaining == {old_pending.id, fresh.id}
        assert old_delivered.id not in remaining
        assert old_failed.id not in remaining
        assert sorted(logs) == ["new", "old-unprocessed"]

    @pytest.mark.asyncio
    async def test_unprocessed_event_still_deduplicated_after_purge(self, services, clock):
        headers = {"X-GitHub-Delivery": "evt-1", "X-GitHub-Event": "push"}
        first = await services.receiver.receive("github", "{}", headers)

        counts = await purge_webhook_history(
            async_session,
            now=clock.now() + timedelta(days=91),
            delivery_retention_days=30,
            inbound_retention_days=90,
        )
        again = await services.receiver.receive("github", "{}", headers)

        assert counts["inbound_logs"] == 0
        assert again.duplicate is True
        assert again.log_id == first.log_id


class TestCleanupTask:
    def test_task_uses_retention_settings(self):
        """The Celery task runs the purge with the configured windows."""
        purge = AsyncMock(return_value={"deliveries": 0, "inbound_logs": 0})
        worker_engine = AsyncMock()
        with (
            patch("hookrelay.workers.cleanup_worker.purge_webhook_history", purge),
            patch(
                "hookrelay.core.database.create_worker_session_factory",
                return_value=(object(), worker_engine),
            ),
            patch("hookrelay.workers.cleanup_worker.settings") as mock_settings,
        ):
            mock_settings.DELIVERY_RETENTION_DAYS = 7
            mock_settings.INBOUND_LOG_RETENTION_DAYS = 14

            result = cleanup_webhook_history.run()

        assert result == {"deliveries": 0, "inbound_logs": 0}
        kwargs = purge.call_args.kwargs
        assert kwargs["delivery_retention_days"] == 7
        assert kwargs["inbound_retention_days"] == 14
        worker_engine.dispose.assert_awaited_once()
