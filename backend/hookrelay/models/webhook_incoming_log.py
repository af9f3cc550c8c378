"""Inbound webhook log: one row per distinct (provider, event_id)."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hookrelay.core.database import Base, UTCDateTime, utcnow


class WebhookIncomingLog(Base):
    __tablename__ = "webhook_incoming_logs"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_incoming_provider_event"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # raw body, verbatim
    signature: Mapped[str | None] = mapped_column(Text)

    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    error_message: Mapped[str | None] = mapped_column(Text)

    received_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, index=True
    )
