"""Construction and teardown of the long-lived webhook components.

Built once per process (in the FastAPI lifespan) and shared by reference, so
the engine, the receiver and the scheduler all see the same stores and clock.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.core.clock import Clock, SystemClock
from hookrelay.services.delivery import DeliveryEngine
from hookrelay.services.receiver import WebhookReceiver
from hookrelay.services.scheduler import RetryScheduler
from hookrelay.services.stores import (
    SqlDeliveryStore,
    SqlInboundLogStore,
    SqlSubscriptionStore,
)
from hookrelay.services.transport import HttpClient, HttpxClient

logger = logging.getLogger(__name__)


@dataclass
class WebhookServices:
    engine: DeliveryEngine
    receiver: WebhookReceiver
    scheduler: RetryScheduler
    http_client: HttpClient

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: HttpClient | None = None,
        clock: Clock | None = None,
    ) -> "WebhookServices":
        clock = clock or SystemClock()
        http_client = http_client or HttpxClient()
        scheduler = RetryScheduler(clock)
        engine = DeliveryEngine(
            subscriptions=SqlSubscriptionStore(session_factory),
            deliveries=SqlDeliveryStore(session_factory),
            http_client=http_client,
            scheduler=scheduler,
            clock=clock,
        )
        receiver = WebhookReceiver(SqlInboundLogStore(session_factory), clock=clock)
        return cls(
            engine=engine, receiver=receiver, scheduler=scheduler, http_client=http_client
        )

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        close = getattr(self.http_client, "aclose", None)
        if close is not None:
            await close()
