from app.business.workspace.gateways import (
    FEATURE_AUTOPILOT,
    FEATURE_REVENUE_INTELLIGENCE,
    FeatureGate,
    IdentityResolver,
    PolicyReader,
    StateReader,
    feature_gate,
    identity_resolver,
    policy_reader,
    state_reader,
)
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

__all__ = [
    "FEATURE_AUTOPILOT",
    "FEATURE_REVENUE_INTELLIGENCE",
    "Deal",
    "FeatureGate",
    "HealthSnapshot",
    "IdentityResolver",
    "Invoice",
    "Nudge",
    "PolicyReader",
    "SecurityEvent",
    "StateReader",
    "TenantFeature",
    "TenantPolicy",
    "WorkItem",
    "WorkspaceUser",
    "feature_gate",
    "identity_resolver",
    "policy_reader",
    "state_reader",
]
