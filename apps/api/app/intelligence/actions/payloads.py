"""Typed action payloads and undo records.

Payloads are persisted as JSON without the ``kind`` tag (the action row
carries it); :func:`parse_payload` re-attaches the tag and validates against
the closed union.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.intelligence.actions.schemas import ActionKind
from app.intelligence.errors import UnsupportedActionError, ValidationError

TargetRole = Literal["ADMIN", "CEO", "OPS", "SALES", "FINANCE"]


class CreateNudgePayload(BaseModel):
    kind: Literal["CREATE_NUDGE"] = "CREATE_NUDGE"
    target_role: TargetRole
    message: str = Field(min_length=1)
    link: str | None = None
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)


class CreateWorkItemPayload(BaseModel):
    kind: Literal["CREATE_WORK_ITEM"] = "CREATE_WORK_ITEM"
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    assignee_id: str | None = None
    due_date: date | None = None
    deal_id: str | None = None
    company_id: str | None = None


class LockInvoicePayload(BaseModel):
    kind: Literal["LOCK_INVOICE"] = "LOCK_INVOICE"
    invoice_id: UUID


class ReassignWorkPayload(BaseModel):
    kind: Literal["REASSIGN_WORK"] = "REASSIGN_WORK"
    work_item_id: UUID
    assignee_id: str = Field(min_length=1)


ActionPayload = Annotated[
    Union[CreateNudgePayload, CreateWorkItemPayload, LockInvoicePayload, ReassignWorkPayload],
    Field(discriminator="kind"),
]


class NudgeUndo(BaseModel):
    kind: Literal["CREATE_NUDGE"] = "CREATE_NUDGE"
    created_nudge_id: UUID


class WorkItemUndo(BaseModel):
    kind: Literal["CREATE_WORK_ITEM"] = "CREATE_WORK_ITEM"
    created_work_item_id: UUID


class InvoiceLockUndo(BaseModel):
    kind: Literal["LOCK_INVOICE"] = "LOCK_INVOICE"
    invoice_id: UUID
    previous_locked_at: datetime | None = None
    previous_locked_by_user_id: str | None = None


class WorkAssigneeUndo(BaseModel):
    kind: Literal["REASSIGN_WORK"] = "REASSIGN_WORK"
    work_item_id: UUID
    previous_assignee_id: str | None = None


UndoRecord = Annotated[
    Union[NudgeUndo, WorkItemUndo, InvoiceLockUndo, WorkAssigneeUndo],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[Any] = TypeAdapter(ActionPayload)
_undo_adapter: TypeAdapter[Any] = TypeAdapter(UndoRecord)


def _require_kind(kind: str) -> str:
    try:
        return ActionKind(kind).value
    except ValueError as exc:
        raise UnsupportedActionError(f"Unsupported action type: {kind}") from exc


def _validate(adapter: TypeAdapter[Any], kind: str, raw: Any, label: str) -> Any:
    if not isinstance(raw, dict):
        raise ValidationError(f"{kind} {label} must be an object")
    try:
        return adapter.validate_python({**raw, "kind": kind})
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {kind} {label}",
            details=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc


def parse_payload(kind: str, raw: Any) -> CreateNudgePayload | CreateWorkItemPayload | LockInvoicePayload | ReassignWorkPayload:
    return _validate(_payload_adapter, _require_kind(kind), raw, "payload")


def parse_undo(kind: str, raw: Any) -> NudgeUndo | WorkItemUndo | InvoiceLockUndo | WorkAssigneeUndo:
    return _validate(_undo_adapter, _require_kind(kind), raw, "undo data")


def dump_record(model: BaseModel) -> dict[str, Any]:
    """JSON-ready form for storage, without the kind tag."""
    return model.model_dump(mode="json", exclude={"kind"})
