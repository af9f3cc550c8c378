from hookrelay.models.webhook_subscription import WebhookSubscription
from hookrelay.models.webhook_delivery import WebhookDelivery
from hookrelay.models.webhook_incoming_log import WebhookIncomingLog

__all__ = [
    "WebhookSubscription",
    "WebhookDelivery",
    "WebhookIncomingLog",
]
