from app.platform.webhooks.api import router
from app.platform.webhooks.dispatcher import DeliveryOutcome, WebhookDispatcher
from app.platform.webhooks.models import WebhookDelivery, WebhookEndpoint
from app.platform.webhooks.schemas import WEBHOOK_EVENTS
from app.platform.webhooks.service import (
    WebhookService,
    dispatch_event,
    register_webhook_forwarding,
    set_dispatcher,
    webhook_service,
)
from app.platform.webhooks.signing import body_hash, sign_body, verify_signature

__all__ = [
    "router",
    "DeliveryOutcome",
    "WEBHOOK_EVENTS",
    "WebhookDelivery",
    "WebhookDispatcher",
    "WebhookEndpoint",
    "WebhookService",
    "body_hash",
    "dispatch_event",
    "register_webhook_forwarding",
    "set_dispatcher",
    "sign_body",
    "verify_signature",
    "webhook_service",
]
