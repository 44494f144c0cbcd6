from app.intelligence.actions.api import router
from app.intelligence.actions.models import AIAction
from app.intelligence.actions.payloads import (
    CreateNudgePayload,
    CreateWorkItemPayload,
    LockInvoicePayload,
    ReassignWorkPayload,
    parse_payload,
)
from app.intelligence.actions.schemas import ActionKind, ActionRead, ActionStatus, PagedActions, ProposalSummary
from app.intelligence.actions.service import ActionLifecycleService, action_service

__all__ = [
    "router",
    "AIAction",
    "ActionKind",
    "ActionLifecycleService",
    "ActionRead",
    "ActionStatus",
    "CreateNudgePayload",
    "CreateWorkItemPayload",
    "LockInvoicePayload",
    "PagedActions",
    "ProposalSummary",
    "ReassignWorkPayload",
    "action_service",
    "parse_payload",
]
