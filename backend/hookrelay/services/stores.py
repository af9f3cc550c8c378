"""Persistence collaborators for the delivery engine and the inbound receiver.

The engine and receiver only talk to the interfaces below. The SQLAlchemy
implementations open one short-lived session per call so that no ORM state
outlives a single lookup or write; rows are returned detached.
"""

import logging
from datetime import datetime
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.models.webhook_delivery import STATUS_PENDING, WebhookDelivery
from hookrelay.models.webhook_incoming_log import WebhookIncomingLog
from hookrelay.models.webhook_subscription import WebhookSubscription

logger = logging.getLogger(__name__)


class DuplicateEventError(Exception):
    """Raised when an inbound log row for (provider, event_id) already exists."""

    def __init__(self, provider: str, event_id: str):
        self.provider = provider
        self.event_id = event_id
        super().__init__(f"Inbound event {provider}/{event_id} already logged")


class SubscriptionStore(Protocol):
    async def find_active_by_event_type(
        self, event_type: str
    ) -> Sequence[WebhookSubscription]: ...

    async def find_by_id(self, subscription_id: UUID) -> WebhookSubscription | None: ...

    async def update(
        self, subscription_id: UUID, **patch: Any
    ) -> WebhookSubscription | None: ...


class DeliveryStore(Protocol):
    async def create(self, **fields: Any) -> WebhookDelivery: ...

    async def update(self, delivery_id: UUID, **patch: Any) -> WebhookDelivery | None: ...

    async def find_by_id(self, delivery_id: UUID) -> WebhookDelivery | None: ...

    async def find_due_retries(
        self, now: datetime, limit: int
    ) -> Sequence[WebhookDelivery]: ...


class InboundLogStore(Protocol):
    async def find_by_event_id(
        self, provider: str, event_id: str
    ) -> WebhookIncomingLog | None: ...

    async def create(self, **fields: Any) -> WebhookIncomingLog: ...


class _SqlStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _update(self, model, row_id: UUID, patch: dict):
        async with self._session_factory() as db:
            row = await db.get(model, row_id)
            if row is None:
                return None
            for key, value in patch.items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
            return row


class SqlSubscriptionStore(_SqlStore):
    async def find_active_by_event_type(
        self, event_type: str
    ) -> list[WebhookSubscription]:
        # Event lists are JSON arrays; matching happens here rather than in SQL
        # so SQLite and Postgres behave the same.
        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookSubscription)
                .where(WebhookSubscription.active == True)  # noqa: E712
                .order_by(WebhookSubscription.created_at)
            )
            subscriptions = result.scalars().all()
        return [s for s in subscriptions if s.listens_to(event_type)]

    async def find_by_id(self, subscription_id: UUID) -> WebhookSubscription | None:
        async with self._session_factory() as db:
            return await db.get(WebhookSubscription, subscription_id)

    async def update(
        self, subscription_id: UUID, **patch: Any
    ) -> WebhookSubscription | None:
        return await self._update(WebhookSubscription, subscription_id, patch)


class SqlDeliveryStore(_SqlStore):
    async def create(self, **fields: Any) -> WebhookDelivery:
        async with self._session_factory() as db:
            delivery = WebhookDelivery(**fields)
            db.add(delivery)
            await db.commit()
            await db.refresh(delivery)
            return delivery

    async def update(self, delivery_id: UUID, **patch: Any) -> WebhookDelivery | None:
        return await self._update(WebhookDelivery, delivery_id, patch)

    async def find_by_id(self, delivery_id: UUID) -> WebhookDelivery | None:
        async with self._session_factory() as db:
            return await db.get(WebhookDelivery, delivery_id)

    async def find_due_retries(
        self, now: datetime, limit: int
    ) -> list[WebhookDelivery]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookDelivery)
                .where(
                    WebhookDelivery.status == STATUS_PENDING,
                    WebhookDelivery.next_retry.is_not(None),
                    WebhookDelivery.next_retry <= now,
                )
                .order_by(WebhookDelivery.next_retry)
                .limit(limit)
            )
            return list(result.scalars().all())


class SqlInboundLogStore(_SqlStore):
    async def find_by_event_id(
        self, provider: str, event_id: str
    ) -> WebhookIncomingLog | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookIncomingLog).where(
                    WebhookIncomingLog.provider == provider,
                    WebhookIncomingLog.event_id == event_id,
                )
            )
            return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> WebhookIncomingLog:
        async with self._session_factory() as db:
            log = WebhookIncomingLog(**fields)
            db.add(log)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateEventError(fields["provider"], fields["event_id"]) from e
            await db.refresh(log)
            return log
