"""Schemas for webhook subscriptions, deliveries and inbound acknowledgements."""

from datetime import datetime
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, Field

from hookrelay.config import settings

BackoffPolicy = Literal["exponential", "linear"]
DeliveryStatus = Literal["pending", "delivered", "failed"]


def _check_endpoint_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return value


def _check_events(value: list[str]) -> list[str]:
    cleaned = []
    for event in value:
        event = event.strip()
        if not event:
            raise ValueError("event types must be non-empty strings")
        if event not in cleaned:
            cleaned.append(event)
    return cleaned


EndpointUrl = Annotated[str, Field(max_length=2048), AfterValidator(_check_endpoint_url)]
EventList = Annotated[list[str], Field(min_length=1), AfterValidator(_check_events)]


class SubscriptionCreateRequest(BaseModel):
    """Register a subscriber endpoint."""

    url: EndpointUrl
    events: EventList  # "*" subscribes to every event
    secret: str | None = Field(default=None, min_length=16, max_length=128)  # generated if omitted
    active: bool = True
    max_retries: int = Field(default=settings.WEBHOOK_DEFAULT_MAX_RETRIES, ge=0, le=20)
    retry_backoff: BackoffPolicy = "exponential"


class SubscriptionUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    url: EndpointUrl | None = None
    events: EventList | None = None
    secret: str | None = Field(default=None, min_length=16, max_length=128)
    active: bool | None = None
    max_retries: int | None = Field(default=None, ge=0, le=20)
    retry_backoff: BackoffPolicy | None = None


class SubscriptionResponse(BaseModel):
    id: str
    url: str
    events: list[str]
    active: bool
    max_retries: int
    retry_backoff: str
    owner: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SubscriptionCreatedResponse(SubscriptionResponse):
    """Returned once at registration; the only response carrying the secret."""

    secret: str


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class SubscriptionListResponse(BaseModel):
    success: bool
    data: list[SubscriptionResponse]
    meta: PageMeta | None = None


class SubscriptionTestResponse(BaseModel):
    success: bool
    message: str
    status_code: int | None = None
    response_time_ms: int


class DeliveryResponse(BaseModel):
    id: str
    subscription_id: str
    event_type: str
    payload: str
    status: DeliveryStatus
    attempts: int
    last_attempt: datetime | None = None
    next_retry: datetime | None = None
    response_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DeliveryListResponse(BaseModel):
    success: bool
    data: list[DeliveryResponse]
    meta: PageMeta


class EventPublishRequest(BaseModel):
    """Publish a domain event to every matching subscriber."""

    event_type: str = Field(min_length=1, max_length=100)
    data: Any = None


class EventPublishResponse(BaseModel):
    success: bool
    event_type: str
    delivery_ids: list[str]


class InboundAckResponse(BaseModel):
    success: bool
    message: str
    id: str | None = None
