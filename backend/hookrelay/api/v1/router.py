from fastapi import APIRouter

from hookrelay.api.v1 import receiver, webhook

api_router = APIRouter(prefix="/v1")

api_router.include_router(webhook.router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(receiver.router, prefix="/webhooks", tags=["Incoming Webhooks"])
