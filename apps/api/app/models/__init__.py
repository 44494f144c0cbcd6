from app.models.audit import AuditLog
from app.business.workspace.models import (
    Deal,
    HealthSnapshot,
    Invoice,
    Nudge,
    SecurityEvent,
    TenantFeature,
    TenantPolicy,
    WorkItem,
    WorkspaceUser,
)
from app.intelligence.actions.models import AIAction
from app.intelligence.insights.models import AIInsight
from app.platform.webhooks.models import WebhookDelivery, WebhookEndpoint

__all__ = [
    "AuditLog",
    "AIAction",
    "AIInsight",
    "Deal",
    "HealthSnapshot",
    "Invoice",
    "Nudge",
    "SecurityEvent",
    "TenantFeature",
    "TenantPolicy",
    "WebhookDelivery",
    "WebhookEndpoint",
    "WorkItem",
    "WorkspaceUser",
]
