"""Outgoing webhook delivery engine.

Fans a domain event out to every active subscription listening for it and
drives each resulting delivery through its lifecycle:

    pending --(2xx)--> delivered
    pending --(error, budget left)--> pending with next_retry set
    pending --(error, budget spent)--> failed

Every attempt increments ``attempts``. Response and error fields always
describe the latest attempt only. Terminal deliveries are never touched again.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any
from uuid import UUID

from hookrelay.config import settings
from hookrelay.core.clock import Clock, SystemClock
from hookrelay.core.metrics import (
    webhook_deliveries_in_flight,
    webhook_deliveries_total,
    webhook_delivery_duration_seconds,
    webhook_events_emitted_total,
    webhook_retry_sweep_total,
)
from hookrelay.core.security import generate_signature
from hookrelay.models.webhook_delivery import (
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_PENDING,
    WebhookDelivery,
)
from hookrelay.models.webhook_subscription import WebhookSubscription
from hookrelay.services.backoff import next_retry_at
from hookrelay.services.discord import is_discord_webhook, to_discord_payload
from hookrelay.services.scheduler import RetryScheduler
from hookrelay.services.stores import DeliveryStore, SubscriptionStore
from hookrelay.services.transport import HttpClient, HttpResponse

logger = logging.getLogger(__name__)

TEST_EVENT = "webhook.test"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix."""
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_envelope(event_type: str, data: Any, now: datetime) -> str:
    """Serialize the body every subscriber receives for an event."""
    return json.dumps(
        {"event": event_type, "timestamp": format_timestamp(now), "data": data},
        default=str,
        ensure_ascii=False,
    )


class DeliveryEngine:
    def __init__(
        self,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        http_client: HttpClient,
        scheduler: RetryScheduler,
        clock: Clock | None = None,
        *,
        request_timeout: float = settings.WEBHOOK_REQUEST_TIMEOUT,
        response_body_limit: int = settings.WEBHOOK_RESPONSE_BODY_LIMIT,
        retry_batch_size: int = settings.WEBHOOK_RETRY_BATCH_SIZE,
        max_concurrency: int = settings.WEBHOOK_MAX_CONCURRENT_DELIVERIES,
        user_agent: str = settings.WEBHOOK_USER_AGENT,
    ):
        self.subscriptions = subscriptions
        self.deliveries = deliveries
        self.http_client = http_client
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.request_timeout = request_timeout
        self.response_body_limit = response_body_limit
        self.retry_batch_size = retry_batch_size
        self.user_agent = user_agent
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight: set[UUID] = set()

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def emit_event(self, event_type: str, data: Any) -> list[UUID]:
        """Create a pending delivery per matching subscription and start sending.

        Returns as soon as the rows exist; the HTTP calls run in the
        background. Store failures are logged here and never reach the caller.
        """
        webhook_events_emitted_total.inc()
        try:
            subscriptions = await self.subscriptions.find_active_by_event_type(
                event_type
            )
        except Exception:
            logger.exception(f"Could not load subscriptions for event {event_type}")
            return []

        if not subscriptions:
            logger.debug(f"No active subscriptions for event {event_type}")
            return []

        payload = build_envelope(event_type, data, self.clock.now())
        created: list[UUID] = []
        for subscription in subscriptions:
            try:
                delivery = await self.deliveries.create(
                    subscription_id=subscription.id,
                    event_type=event_type,
                    payload=payload,
                    status=STATUS_PENDING,
                    attempts=0,
                )
            except Exception:
                logger.exception(
                    f"Could not queue event {event_type} for subscription {subscription.id}"
                )
                continue
            created.append(delivery.id)
            self._start(delivery.id)

        logger.info(
            f"Event {event_type} queued for {len(created)} subscription(s)"
        )
        return created

    def emit_event_nowait(self, event_type: str, data: Any) -> asyncio.Task:
        """Fire-and-forget variant of emit_event for request handlers."""
        return self.scheduler.spawn(
            self.emit_event(event_type, data), name=f"webhook-emit-{event_type}"
        )

    async def redeliver(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Queue a fresh copy of a finished delivery and start sending it.

        The original row keeps its terminal state and history.
        """
        copy = await self.deliveries.create(
            subscription_id=delivery.subscription_id,
            event_type=delivery.event_type,
            payload=delivery.payload,
            status=STATUS_PENDING,
            attempts=0,
        )
        logger.info(f"Delivery {delivery.id} re-queued as {copy.id}")
        self._start(copy.id)
        return copy

    def _start(self, delivery_id: UUID) -> None:
        self.scheduler.spawn(
            self.deliver(delivery_id), name=f"webhook-deliver-{delivery_id}"
        )

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    async def deliver(self, delivery_id: UUID) -> None:
        """Make one delivery attempt and record its outcome."""
        if delivery_id in self._in_flight:
            logger.info(f"Delivery {delivery_id} already in progress, skipping")
            return
        self._in_flight.add(delivery_id)
        try:
            async with self._semaphore:
                await self._attempt(delivery_id)
        finally:
            self._in_flight.discard(delivery_id)

    async def _attempt(self, delivery_id: UUID) -> None:
        delivery = await self.deliveries.find_by_id(delivery_id)
        if delivery is None:
            logger.error(f"Delivery {delivery_id} not found")
            webhook_deliveries_total.labels(outcome="skipped").inc()
            return
        if delivery.is_terminal:
            logger.info(f"Delivery {delivery_id} already {delivery.status}, skipping")
            webhook_deliveries_total.labels(outcome="skipped").inc()
            return

        subscription = await self.subscriptions.find_by_id(delivery.subscription_id)
        if subscription is None:
            logger.error(
                f"Subscription {delivery.subscription_id} for delivery {delivery_id} not found"
            )
            webhook_deliveries_total.labels(outcome="skipped").inc()
            return
        if not subscription.active:
            logger.warning(
                f"Subscription {subscription.id} is inactive, delivery {delivery_id} not sent"
            )
            webhook_deliveries_total.labels(outcome="skipped").inc()
            return

        headers, body = self.build_request(
            subscription,
            event_type=delivery.event_type,
            payload=delivery.payload,
            delivery_id=delivery.id,
        )
        attempts = delivery.attempts + 1
        attempted_at = self.clock.now()

        response = None
        error = None
        started = time.monotonic()
        webhook_deliveries_in_flight.inc()
        try:
            response = await self.http_client.post(
                subscription.url, headers, body, self.request_timeout
            )
        except Exception as e:
            # Any failure to get a response counts as a failed attempt
            error = str(e) or e.__class__.__name__
        finally:
            webhook_deliveries_in_flight.dec()
            webhook_delivery_duration_seconds.observe(time.monotonic() - started)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if response is None:
            logger.warning(
                f"Delivery {delivery_id} to {subscription.url} failed after "
                f"{elapsed_ms}ms (attempt {attempts}/{subscription.max_retries}): {error}"
            )
            await self._record_failure(
                delivery, subscription, attempts, attempted_at, error=error
            )
            return

        if response.ok:
            await self.deliveries.update(
                delivery.id,
                status=STATUS_DELIVERED,
                attempts=attempts,
                last_attempt=attempted_at,
                next_retry=None,
                response_code=response.status_code,
                response_body=self._truncate(response.text),
                error_message=None,
            )
            self.scheduler.cancel(delivery.id)
            webhook_deliveries_total.labels(outcome="delivered").inc()
            logger.info(
                f"Delivery {delivery_id} ({delivery.event_type}) delivered to "
                f"{subscription.url}: {response.status_code} in {elapsed_ms}ms "
                f"(attempt {attempts})"
            )
            return

        logger.warning(
            f"Delivery {delivery_id} to {subscription.url} returned "
            f"{response.status_code} (attempt {attempts}/{subscription.max_retries})"
        )
        await self._record_failure(
            delivery, subscription, attempts, attempted_at, response=response
        )

    async def _record_failure(
        self,
        delivery: WebhookDelivery,
        subscription: WebhookSubscription,
        attempts: int,
        attempted_at: datetime,
        response: HttpResponse | None = None,
        error: str | None = None,
    ) -> None:
        # attempts is the post-increment count; the budget check is strict
        should_retry = attempts < subscription.max_retries

        if response is not None:
            response_code = response.status_code
            response_body = self._truncate(response.text)
            if should_retry:
                error_message = f"HTTP {response_code}: {response.reason}"
            else:
                error_message = (
                    f"Max retries ({subscription.max_retries}) exceeded. "
                    f"Last error: HTTP {response_code}"
                )
        else:
            response_code = None
            response_body = None
            if should_retry:
                error_message = f"Network error: {error}"
            else:
                error_message = f"Max retries exceeded. Last error: {error}"

        if should_retry:
            retry_at = next_retry_at(
                attempts, subscription.retry_backoff, self.clock.now()
            )
            await self.deliveries.update(
                delivery.id,
                attempts=attempts,
                last_attempt=attempted_at,
                next_retry=retry_at,
                response_code=response_code,
                response_body=response_body,
                error_message=error_message,
            )
            self.scheduler.schedule(delivery.id, retry_at, self.deliver)
            webhook_deliveries_total.labels(outcome="retry").inc()
            logger.info(
                f"Delivery {delivery.id} will retry at {retry_at.isoformat()} "
                f"({subscription.retry_backoff} backoff)"
            )
            return

        await self.deliveries.update(
            delivery.id,
            status=STATUS_FAILED,
            attempts=attempts,
            last_attempt=attempted_at,
            next_retry=None,
            response_code=response_code,
            response_body=response_body,
            error_message=error_message,
        )
        self.scheduler.cancel(delivery.id)
        webhook_deliveries_total.labels(outcome="failed").inc()
        logger.error(
            f"Delivery {delivery.id} to {subscription.url} failed permanently "
            f"after {attempts} attempt(s): {error_message}"
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_request(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        payload: str,
        delivery_id: UUID | str,
    ) -> tuple[dict[str, str], str]:
        """Headers and body for one POST.

        The body is exactly the string that was signed. Discord endpoints get
        an embed body and none of the X-Webhook-* headers.
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }
        if is_discord_webhook(subscription.url):
            return headers, to_discord_payload(payload)

        headers["X-Webhook-Event"] = event_type
        headers["X-Webhook-Signature"] = generate_signature(payload, subscription.secret)
        headers["X-Webhook-Timestamp"] = format_timestamp(self.clock.now())
        headers["X-Webhook-ID"] = str(delivery_id)
        return headers, payload

    def _truncate(self, text: str | None) -> str | None:
        if text is None:
            return None
        return text[: self.response_body_limit]

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def process_pending_retries(self) -> int:
        """Resume pending deliveries whose retry time has already passed.

        Run once at startup to pick up retries whose in-process timers were
        lost with the previous process. Safe to call again at any time.
        """
        due = await self.deliveries.find_due_retries(
            self.clock.now(), self.retry_batch_size
        )
        if not due:
            logger.info("No pending webhook retries to resume")
            return 0

        logger.info(f"Resuming {len(due)} pending webhook deliveries")
        for delivery in due:
            self._start(delivery.id)
        webhook_retry_sweep_total.inc(len(due))
        return len(due)

    # ------------------------------------------------------------------
    # Connectivity check
    # ------------------------------------------------------------------

    async def send_test(self, subscription: WebhookSubscription) -> dict:
        """POST a signed webhook.test event and report the outcome.

        Runs inline and leaves no delivery row behind.
        """
        payload = build_envelope(
            TEST_EVENT,
            {
                "message": "This is a test webhook",
                "subscription_id": str(subscription.id),
            },
            self.clock.now(),
        )
        headers, body = self.build_request(
            subscription,
            event_type=TEST_EVENT,
            payload=payload,
            delivery_id=f"test-{subscription.id}",
        )

        started = time.monotonic()
        try:
            response = await self.http_client.post(
                subscription.url, headers, body, self.request_timeout
            )
        except Exception as e:
            return {
                "success": False,
                "message": f"Test webhook failed: {e}",
                "status_code": None,
                "response_time_ms": int((time.monotonic() - started) * 1000),
            }

        return {
            "success": response.ok,
            "message": "Test webhook delivered"
            if response.ok
            else f"Endpoint responded with HTTP {response.status_code}",
            "status_code": response.status_code,
            "response_time_ms": int((time.monotonic() - started) * 1000),
        }
