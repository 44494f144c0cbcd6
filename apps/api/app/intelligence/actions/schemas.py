from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ActionKind(str, Enum):
    CREATE_NUDGE = "CREATE_NUDGE"
    CREATE_WORK_ITEM = "CREATE_WORK_ITEM"
    LOCK_INVOICE = "LOCK_INVOICE"
    REASSIGN_WORK = "REASSIGN_WORK"


class ActionStatus(str, Enum):
    PROPOSED = "PROPOSED"
    APPROVED = "APPROVED"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


# Kinds an OPS actor may execute; everything else needs CEO or ADMIN.
OPS_EXECUTABLE_KINDS = frozenset({ActionKind.CREATE_NUDGE.value, ActionKind.CREATE_WORK_ITEM.value})


class ActionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    insight_id: UUID | None
    kind: str
    status: str
    title: str
    rationale: str
    payload: dict[str, Any]
    approved_by_user_id: str | None
    approved_at: datetime | None
    executed_by_user_id: str | None
    executed_at: datetime | None
    undo_data: dict[str, Any] | None = Field(default=None)
    undo_expires_at: datetime | None
    error: str | None
    created_at: datetime


class PagedActions(BaseModel):
    items: list[ActionRead]
    page: int
    page_size: int
    total: int


class ProposalSummary(BaseModel):
    created: int = 0
    skipped: int = 0
    total_open: int = 0
