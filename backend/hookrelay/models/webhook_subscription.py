"""Webhook subscription: a subscriber endpoint and the event types it listens to."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hookrelay.core.database import Base, UTCDateTime, utcnow

WILDCARD_EVENT = "*"


class WebhookSubscription(Base):
    __tablename__ = "webhook_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    max_retries: Mapped[int] = mapped_column(Integer, default=6)
    retry_backoff: Mapped[str] = mapped_column(
        String(20), default="exponential"
    )  # exponential, linear
    owner: Mapped[str | None] = mapped_column(String(64), index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow
    )

    deliveries = relationship(
        "WebhookDelivery", back_populates="subscription", passive_deletes="all"
    )

    def listens_to(self, event_type: str) -> bool:
        events = self.events or []
        return event_type in events or WILDCARD_EVENT in events
