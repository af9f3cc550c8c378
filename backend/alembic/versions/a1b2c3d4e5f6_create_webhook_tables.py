"""create webhook subscriptions, deliveries and incoming logs tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Subscriptions
    op.create_table(
        "webhook_subscriptions",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("events", sa.JSON, nullable=False),
        sa.Column("secret", sa.String(128), nullable=False),
        sa.Column("active", sa.Boolean, server_default=sa.true(), index=True),
        sa.Column("max_retries", sa.Integer, server_default="6"),
        sa.Column("retry_backoff", sa.String(20), server_default="exponential"),
        sa.Column("owner", sa.String(64), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Outgoing deliveries
    op.create_table(
        "webhook_deliveries",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("subscription_id", sa.Uuid, sa.ForeignKey("webhook_subscriptions.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), server_default="pending", index=True),
        sa.Column("attempts", sa.Integer, server_default="0"),
        sa.Column("last_attempt", sa.DateTime(timezone=True)),
        sa.Column("next_retry", sa.DateTime(timezone=True), index=True),
        sa.Column("response_code", sa.Integer),
        sa.Column("response_body", sa.Text),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Incoming webhook log, one row per (provider, event_id)
    op.create_table(
        "webhook_incoming_logs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("signature", sa.Text),
        sa.Column("verified", sa.Boolean, server_default=sa.false()),
        sa.Column("processed", sa.Boolean, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.UniqueConstraint("provider", "event_id", name="uq_incoming_provider_event"),
    )


def downgrade() -> None:
    op.drop_table("webhook_incoming_logs")
    op.drop_table("webhook_deliveries")
    op.drop_table("webhook_subscriptions")
