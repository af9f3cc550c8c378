"""Webhook subscription management and delivery inspection endpoints."""

import logging
import math
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.api.deps import (
    CurrentUser,
    get_current_user,
    get_delivery_engine,
    get_optional_user,
)
from hookrelay.core.database import get_db
from hookrelay.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from hookrelay.core.security import generate_webhook_secret
from hookrelay.models.webhook_delivery import (
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_PENDING,
    WebhookDelivery,
)
from hookrelay.models.webhook_subscription import WebhookSubscription
from hookrelay.schemas.webhook import (
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryStatus,
    EventPublishRequest,
    EventPublishResponse,
    PageMeta,
    SubscriptionCreatedResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionTestResponse,
    SubscriptionUpdateRequest,
)
from hookrelay.services.delivery import DeliveryEngine

router = APIRouter()
logger = logging.getLogger(__name__)


def _subscription_to_response(s: WebhookSubscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=str(s.id),
        url=s.url,
        events=list(s.events or []),
        active=s.active,
        max_retries=s.max_retries,
        retry_backoff=s.retry_backoff,
        owner=s.owner,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


def _delivery_to_response(d: WebhookDelivery) -> DeliveryResponse:
    return DeliveryResponse(
        id=str(d.id),
        subscription_id=str(d.subscription_id),
        event_type=d.event_type,
        payload=d.payload,
        status=d.status,
        attempts=d.attempts,
        last_attempt=d.last_attempt,
        next_retry=d.next_retry,
        response_code=d.response_code,
        response_body=d.response_body,
        error_message=d.error_message,
        created_at=d.created_at,
        updated_at=d.updated_at,
    )


def _page_meta(total: int, page: int, limit: int) -> PageMeta:
    total_pages = math.ceil(total / limit) if limit else 0
    return PageMeta(
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


def _visible_to(user: CurrentUser | None):
    """Subscriptions a caller may read: ownerless ones plus their own."""
    if user is None:
        return WebhookSubscription.owner.is_(None)
    return or_(WebhookSubscription.owner.is_(None), WebhookSubscription.owner == user.id)


async def _get_visible_subscription(
    db: AsyncSession, subscription_id: UUID, user: CurrentUser | None
) -> WebhookSubscription:
    subscription = await db.get(WebhookSubscription, subscription_id)
    if not subscription:
        raise NotFoundError("Subscription not found")
    if subscription.owner is not None and (user is None or subscription.owner != user.id):
        raise ForbiddenError("You do not have access to this subscription")
    return subscription


async def _get_owned_subscription(
    db: AsyncSession, subscription_id: UUID, user: CurrentUser
) -> WebhookSubscription:
    subscription = await db.get(WebhookSubscription, subscription_id)
    if not subscription:
        raise NotFoundError("Subscription not found")
    if subscription.owner != user.id:
        raise ForbiddenError("Only the owner can modify this subscription")
    return subscription


async def _get_visible_delivery(
    db: AsyncSession, delivery_id: UUID, user: CurrentUser | None
) -> WebhookDelivery:
    delivery = await db.get(WebhookDelivery, delivery_id)
    if not delivery:
        raise NotFoundError("Webhook event not found")
    await _get_visible_subscription(db, delivery.subscription_id, user)
    return delivery


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@router.get(
    "/subscriptions",
    response_model=SubscriptionListResponse,
    summary="List webhook subscriptions",
    description="List subscriptions visible to the caller, newest first by default. "
    "Pass all=true to skip pagination.",
)
async def list_subscriptions(
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    all_: bool = Query(False, alias="all"),
    active: bool | None = Query(None),
    sort: Literal["asc", "desc"] = Query("desc"),
):
    filters = [_visible_to(user)]
    if active is not None:
        filters.append(WebhookSubscription.active == active)

    order = (
        WebhookSubscription.created_at.asc()
        if sort == "asc"
        else WebhookSubscription.created_at.desc()
    )
    query = select(WebhookSubscription).where(*filters).order_by(order)

    if all_:
        result = await db.execute(query)
        return SubscriptionListResponse(
            success=True,
            data=[_subscription_to_response(s) for s in result.scalars().all()],
        )

    count_result = await db.execute(
        select(func.count()).select_from(WebhookSubscription).where(*filters)
    )
    total = count_result.scalar() or 0

    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return SubscriptionListResponse(
        success=True,
        data=[_subscription_to_response(s) for s in result.scalars().all()],
        meta=_page_meta(total, page, limit),
    )


@router.post(
    "/subscriptions",
    status_code=status.HTTP_201_CREATED,
    response_model=SubscriptionCreatedResponse,
    summary="Create webhook subscription",
    description="Register an endpoint for one or more event types ('*' for all). "
    "A signing secret is generated when none is given. The secret is only "
    "returned in this response, so store it securely.",
)
async def create_subscription(
    request: SubscriptionCreateRequest,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = WebhookSubscription(
        url=request.url,
        events=request.events,
        secret=request.secret or generate_webhook_secret(),
        active=request.active,
        max_retries=request.max_retries,
        retry_backoff=request.retry_backoff,
        owner=user.id if user else None,
    )
    db.add(subscription)
    await db.flush()
    await db.refresh(subscription)

    logger.info(
        f"Subscription {subscription.id} created for {subscription.url} "
        f"(events={subscription.events}, owner={subscription.owner})"
    )
    return SubscriptionCreatedResponse(
        **_subscription_to_response(subscription).model_dump(),
        secret=subscription.secret,
    )


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Get webhook subscription",
)
async def get_subscription(
    subscription_id: UUID,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = await _get_visible_subscription(db, subscription_id, user)
    return _subscription_to_response(subscription)


@router.patch(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Update webhook subscription",
    description="Change url, events, secret, active flag or retry settings. "
    "Only the owner may update a subscription. Deactivation takes effect at "
    "the next delivery attempt.",
)
async def update_subscription(
    subscription_id: UUID,
    request: SubscriptionUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = await _get_owned_subscription(db, subscription_id, user)

    for field, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(subscription, field, value)

    await db.flush()
    await db.refresh(subscription)
    logger.info(f"Subscription {subscription.id} updated")
    return _subscription_to_response(subscription)


@router.delete(
    "/subscriptions/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete webhook subscription",
    description="Delete a subscription that has never produced a delivery. "
    "Subscriptions with delivery history must be deactivated instead.",
)
async def delete_subscription(
    subscription_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = await _get_owned_subscription(db, subscription_id, user)

    count_result = await db.execute(
        select(func.count())
        .select_from(WebhookDelivery)
        .where(WebhookDelivery.subscription_id == subscription.id)
    )
    if count_result.scalar():
        raise ConflictError(
            "Subscription has delivery history; deactivate it instead of deleting"
        )

    await db.delete(subscription)
    logger.info(f"Subscription {subscription_id} deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/subscriptions/{subscription_id}/test",
    response_model=SubscriptionTestResponse,
    summary="Send test webhook",
    description="Send a signed webhook.test event to the subscription endpoint "
    "and report the status code and response time. No delivery is recorded.",
)
async def test_subscription(
    subscription_id: UUID,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    engine: DeliveryEngine = Depends(get_delivery_engine),
):
    subscription = await _get_visible_subscription(db, subscription_id, user)
    result = await engine.send_test(subscription)
    return SubscriptionTestResponse(**result)


# ---------------------------------------------------------------------------
# Events (deliveries)
# ---------------------------------------------------------------------------


@router.get(
    "/events",
    response_model=DeliveryListResponse,
    summary="List webhook events",
    description="List outgoing deliveries, optionally filtered by subscription "
    "or status. Results are paginated.",
)
async def list_events(
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    subscription_id: UUID | None = Query(None),
    status_: DeliveryStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    sort: Literal["asc", "desc"] = Query("desc"),
):
    filters = [_visible_to(user)]
    if subscription_id:
        filters.append(WebhookDelivery.subscription_id == subscription_id)
    if status_:
        filters.append(WebhookDelivery.status == status_)

    count_result = await db.execute(
        select(func.count())
        .select_from(WebhookDelivery)
        .join(WebhookSubscription)
        .where(*filters)
    )
    total = count_result.scalar() or 0

    order = (
        WebhookDelivery.created_at.asc()
        if sort == "asc"
        else WebhookDelivery.created_at.desc()
    )
    result = await db.execute(
        select(WebhookDelivery)
        .join(WebhookSubscription)
        .where(*filters)
        .order_by(order)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return DeliveryListResponse(
        success=True,
        data=[_delivery_to_response(d) for d in result.scalars().all()],
        meta=_page_meta(total, page, limit),
    )


@router.post(
    "/events",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=EventPublishResponse,
    summary="Publish event",
    description="Fan an event out to every active subscription listening for its "
    "type. Deliveries are queued and sent in the background.",
)
async def publish_event(
    request: EventPublishRequest,
    user: CurrentUser = Depends(get_current_user),
    engine: DeliveryEngine = Depends(get_delivery_engine),
):
    delivery_ids = await engine.emit_event(request.event_type, request.data)
    logger.info(
        f"User {user.id} published {request.event_type} "
        f"({len(delivery_ids)} deliveries)"
    )
    return EventPublishResponse(
        success=True,
        event_type=request.event_type,
        delivery_ids=[str(d) for d in delivery_ids],
    )


@router.get(
    "/events/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Get webhook event",
)
async def get_event(
    delivery_id: UUID,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    delivery = await _get_visible_delivery(db, delivery_id, user)
    return _delivery_to_response(delivery)


@router.post(
    "/events/{delivery_id}/retry",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=DeliveryResponse,
    summary="Retry failed webhook event",
    description="Queue a new delivery carrying the same payload as a failed one. "
    "The failed delivery keeps its history.",
)
async def retry_event(
    delivery_id: UUID,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    engine: DeliveryEngine = Depends(get_delivery_engine),
):
    delivery = await _get_visible_delivery(db, delivery_id, user)
    if delivery.status != STATUS_FAILED:
        raise ConflictError(f"Only failed events can be retried (status is {delivery.status})")

    copy = await engine.redeliver(delivery)
    return _delivery_to_response(copy)


@router.get(
    "/stats",
    summary="Get webhook statistics",
    description="Delivery counts by status and the success rate of finished "
    "deliveries for subscriptions visible to the caller.",
)
async def webhook_stats(
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(WebhookDelivery.status, func.count())
        .join(WebhookSubscription)
        .where(_visible_to(user))
        .group_by(WebhookDelivery.status)
    )
    counts = {row[0]: row[1] for row in result.all()}

    delivered = counts.get(STATUS_DELIVERED, 0)
    failed = counts.get(STATUS_FAILED, 0)
    finished = delivered + failed

    return {
        "success": True,
        "stats": {
            "total_deliveries": sum(counts.values()),
            "pending": counts.get(STATUS_PENDING, 0),
            "delivered": delivered,
            "failed": failed,
            "success_rate": round(delivered / finished * 100, 1) if finished else 0,
        },
    }
