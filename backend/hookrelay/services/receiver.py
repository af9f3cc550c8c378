"""Inbound webhook ingestion with per-provider deduplication.

Each provider has an extractor that pulls ``(event_id, event_type,
signature)`` out of a raw request. The receiver logs every distinct
``(provider, event_id)`` exactly once; repeats are acknowledged without a
second row. Signature checks and payload processing happen later, against
the stored row.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping
from uuid import UUID

from hookrelay.core.clock import Clock, SystemClock
from hookrelay.core.metrics import webhook_inbound_total
from hookrelay.services.stores import DuplicateEventError, InboundLogStore

logger = logging.getLogger(__name__)

MAX_EVENT_ID_LENGTH = 255
MAX_EVENT_TYPE_LENGTH = 100


class MalformedPayloadError(Exception):
    """The request does not have the shape its provider requires."""


@dataclass
class Envelope:
    event_id: str
    event_type: str
    signature: str | None = None


@dataclass
class ReceiveResult:
    accepted: bool
    duplicate: bool
    log_id: UUID | None
    provider: str
    event_id: str


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value or None


def _generated_id() -> str:
    return str(uuid.uuid4())


def _scalar_text(value) -> str | None:
    """JSON string or number as text; anything else counts as missing."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return str(value) or None


class ProviderExtractor(ABC):
    """Reads the provider's envelope out of a raw webhook request.

    ``strict`` is set by the provider-specific routes. In strict mode a
    missing mandatory field is an error; otherwise it is replaced by a
    generated id or a placeholder type.
    """

    name: str = ""

    @abstractmethod
    def extract(
        self, raw_body: str, headers: Mapping[str, str], strict: bool = False
    ) -> Envelope: ...


class GitHubExtractor(ProviderExtractor):
    name = "github"

    def extract(self, raw_body, headers, strict=False):
        delivery_id = _header(headers, "X-GitHub-Delivery")
        event = _header(headers, "X-GitHub-Event")
        if strict and (not delivery_id or not event):
            raise MalformedPayloadError("Missing required GitHub headers")
        return Envelope(
            event_id=delivery_id or _generated_id(),
            event_type=event or "unknown",
            signature=_header(headers, "X-Hub-Signature-256"),
        )


class StripeExtractor(ProviderExtractor):
    name = "stripe"

    def extract(self, raw_body, headers, strict=False):
        signature = _header(headers, "Stripe-Signature")
        try:
            data = json.loads(raw_body)
        except ValueError:
            if strict:
                raise MalformedPayloadError("Invalid JSON payload")
            return Envelope(_generated_id(), "unknown", signature)

        if not isinstance(data, dict):
            data = {}
        event_id = _scalar_text(data.get("id"))
        event_type = _scalar_text(data.get("type"))
        if strict and (event_id is None or event_type is None):
            raise MalformedPayloadError("Missing Stripe event id or type")
        return Envelope(
            event_id=event_id or _generated_id(),
            event_type=event_type or "unknown",
            signature=signature,
        )


class GenericExtractor(ProviderExtractor):
    name = "generic"

    def extract(self, raw_body, headers, strict=False):
        return Envelope(
            event_id=_header(headers, "X-Webhook-ID") or _generated_id(),
            event_type=_header(headers, "X-Webhook-Event") or "webhook.received",
            signature=_header(headers, "X-Webhook-Signature"),
        )


class ProviderRegistry:
    """Provider name to extractor; unknown names use the generic extractor."""

    def __init__(self, fallback: ProviderExtractor | None = None):
        self._extractors: dict[str, ProviderExtractor] = {}
        self._fallback = fallback or GenericExtractor()

    def register(self, extractor: ProviderExtractor) -> None:
        self._extractors[extractor.name.lower()] = extractor

    def get(self, provider: str) -> ProviderExtractor:
        return self._extractors.get(provider.lower(), self._fallback)

    def __contains__(self, provider: str) -> bool:
        return provider.lower() in self._extractors


def default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(GitHubExtractor())
    registry.register(StripeExtractor())
    return registry


class WebhookReceiver:
    def __init__(
        self,
        logs: InboundLogStore,
        clock: Clock | None = None,
        registry: ProviderRegistry | None = None,
    ):
        self.logs = logs
        self.clock = clock or SystemClock()
        self.registry = registry or default_registry()

    async def receive(
        self,
        provider: str,
        raw_body: str,
        headers: Mapping[str, str],
        strict: bool = False,
    ) -> ReceiveResult:
        """Log an inbound webhook once per (provider, event id).

        Raises MalformedPayloadError when a strict provider contract is not
        met; nothing is stored in that case.
        """
        provider = provider.lower()
        try:
            envelope = self.registry.get(provider).extract(raw_body, headers, strict)
            if len(envelope.event_id) > MAX_EVENT_ID_LENGTH:
                raise MalformedPayloadError("Event id is too long")
            if len(envelope.event_type) > MAX_EVENT_TYPE_LENGTH:
                raise MalformedPayloadError("Event type is too long")
        except MalformedPayloadError as e:
            webhook_inbound_total.labels(
                provider=self._metric_label(provider), result="rejected"
            ).inc()
            logger.warning(f"Rejected {provider} webhook: {e}")
            raise

        existing = await self.logs.find_by_event_id(provider, envelope.event_id)
        if existing is not None:
            return self._duplicate(provider, envelope, existing.id)

        try:
            log = await self.logs.create(
                provider=provider,
                event_id=envelope.event_id,
                event_type=envelope.event_type,
                payload=raw_body,
                signature=envelope.signature,
                verified=False,
                processed=False,
                received_at=self.clock.now(),
            )
        except DuplicateEventError:
            # Lost a race with a concurrent delivery of the same event
            existing = await self.logs.find_by_event_id(provider, envelope.event_id)
            return self._duplicate(
                provider, envelope, existing.id if existing is not None else None
            )

        webhook_inbound_total.labels(
            provider=self._metric_label(provider), result="accepted"
        ).inc()
        logger.info(
            f"Received {provider} webhook {envelope.event_type} "
            f"(event {envelope.event_id}, log {log.id})"
        )
        return ReceiveResult(
            accepted=True,
            duplicate=False,
            log_id=log.id,
            provider=provider,
            event_id=envelope.event_id,
        )

    def _metric_label(self, provider: str) -> str:
        # Provider names come from the URL; unregistered ones share one series
        return provider if provider in self.registry else GenericExtractor.name

    def _duplicate(
        self, provider: str, envelope: Envelope, log_id: UUID | None
    ) -> ReceiveResult:
        webhook_inbound_total.labels(
            provider=self._metric_label(provider), result="duplicate"
        ).inc()
        logger.info(
            f"Duplicate {provider} webhook {envelope.event_id} ignored (already logged)"
        )
        return ReceiveResult(
            accepted=True,
            duplicate=True,
            log_id=log_id,
            provider=provider,
            event_id=envelope.event_id,
        )
