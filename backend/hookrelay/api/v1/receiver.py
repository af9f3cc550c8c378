"""Inbound webhook endpoints for third-party providers."""

import logging

from fastapi import APIRouter, Depends, Path, Request

from hookrelay.api.deps import get_webhook_receiver
from hookrelay.core.exceptions import BadRequestError
from hookrelay.schemas.webhook import InboundAckResponse
from hookrelay.services.receiver import (
    MalformedPayloadError,
    ReceiveResult,
    WebhookReceiver,
)

router = APIRouter()
logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Event already processed (idempotent)"
RECEIVED_MESSAGE = "Webhook received"


def _ack(result: ReceiveResult) -> InboundAckResponse:
    if result.duplicate:
        return InboundAckResponse(success=True, message=DUPLICATE_MESSAGE)
    return InboundAckResponse(
        success=True, message=RECEIVED_MESSAGE, id=str(result.log_id)
    )


async def _receive(
    receiver: WebhookReceiver, provider: str, request: Request, strict: bool
) -> InboundAckResponse:
    raw_body = (await request.body()).decode("utf-8", errors="replace")
    try:
        result = await receiver.receive(provider, raw_body, request.headers, strict=strict)
    except MalformedPayloadError as e:
        raise BadRequestError(str(e))
    return _ack(result)


@router.post(
    "/incoming/{provider}",
    response_model=InboundAckResponse,
    response_model_exclude_none=True,
    summary="Receive webhook",
    description="Accept a webhook from any provider. GitHub and Stripe requests "
    "are read with their own conventions; anything else uses the X-Webhook-ID "
    "and X-Webhook-Event headers. Repeated event ids are acknowledged without "
    "being stored twice.",
)
async def receive_webhook(
    request: Request,
    provider: str = Path(..., max_length=50, pattern=r"^[A-Za-z0-9_.-]+$"),
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    return await _receive(receiver, provider, request, strict=False)


@router.post(
    "/github",
    response_model=InboundAckResponse,
    response_model_exclude_none=True,
    summary="Receive GitHub webhook",
    description="GitHub webhook endpoint. Requires the X-GitHub-Delivery and "
    "X-GitHub-Event headers.",
)
async def receive_github_webhook(
    request: Request,
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    return await _receive(receiver, "github", request, strict=True)


@router.post(
    "/stripe",
    response_model=InboundAckResponse,
    response_model_exclude_none=True,
    summary="Receive Stripe webhook",
    description="Stripe webhook endpoint. The body must be a JSON event with "
    "id and type fields; anything else is rejected with 400 and not stored.",
)
async def receive_stripe_webhook(
    request: Request,
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    return await _receive(receiver, "stripe", request, strict=True)
