from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, delete, select, update
from sqlalchemy.orm import Session

from app.business.workspace.gateways import IdentityResolver, identity_resolver
from app.business.workspace.models import Invoice, Nudge, WorkItem
from app.intelligence.actions.payloads import (
    CreateNudgePayload,
    CreateWorkItemPayload,
    InvoiceLockUndo,
    LockInvoicePayload,
    NudgeUndo,
    ReassignWorkPayload,
    WorkAssigneeUndo,
    WorkItemUndo,
)
from app.intelligence.errors import NotFoundError, UnsupportedActionError

ExecutablePayload = CreateNudgePayload | CreateWorkItemPayload | LockInvoicePayload | ReassignWorkPayload
UndoData = NudgeUndo | WorkItemUndo | InvoiceLockUndo | WorkAssigneeUndo


@dataclass(slots=True)
class ActionExecutor:
    """Applies an action's side effect and reverses it.

    Each ``execute`` branch returns exactly the data its ``compensate`` branch
    needs. Neither side commits.
    """

    identities: IdentityResolver = field(default_factory=lambda: identity_resolver)

    def execute(
        self,
        session: Session,
        tenant_id: str,
        payload: ExecutablePayload,
        actor_user_id: str,
        now: datetime,
    ) -> UndoData:
        match payload:
            case CreateNudgePayload():
                target = self.identities.find_active_user_by_role(session, tenant_id, payload.target_role)
                nudge = Nudge(
                    tenant_id=tenant_id,
                    created_by_user_id=actor_user_id,
                    target_user_id=str(target.id),
                    entity_type=payload.entity_type,
                    entity_id=payload.entity_id,
                    message=payload.message,
                    link=payload.link,
                    status="OPEN",
                    created_at=now,
                )
                session.add(nudge)
                session.flush()
                return NudgeUndo(created_nudge_id=nudge.id)

            case CreateWorkItemPayload():
                work_item = WorkItem(
                    tenant_id=tenant_id,
                    title=payload.title,
                    description=payload.description,
                    status="TODO",
                    due_date=payload.due_date,
                    assigned_to_user_id=payload.assignee_id,
                    created_by_user_id=actor_user_id,
                    deal_id=payload.deal_id,
                    company_id=payload.company_id,
                    created_at=now,
                )
                session.add(work_item)
                session.flush()
                return WorkItemUndo(created_work_item_id=work_item.id)

            case LockInvoicePayload():
                invoice = session.scalar(
                    select(Invoice).where(and_(Invoice.id == payload.invoice_id, Invoice.tenant_id == tenant_id))
                )
                if invoice is None:
                    raise NotFoundError("Invoice not found")
                undo = InvoiceLockUndo(
                    invoice_id=invoice.id,
                    previous_locked_at=invoice.locked_at,
                    previous_locked_by_user_id=invoice.locked_by_user_id,
                )
                invoice.locked_at = now
                invoice.locked_by_user_id = actor_user_id
                session.flush()
                return undo

            case ReassignWorkPayload():
                work_item = session.scalar(
                    select(WorkItem).where(and_(WorkItem.id == payload.work_item_id, WorkItem.tenant_id == tenant_id))
                )
                if work_item is None:
                    raise NotFoundError("Work item not found")
                undo = WorkAssigneeUndo(work_item_id=work_item.id, previous_assignee_id=work_item.assigned_to_user_id)
                work_item.assigned_to_user_id = payload.assignee_id
                session.flush()
                return undo

        raise UnsupportedActionError("Unsupported AI action type")

    def compensate(self, session: Session, tenant_id: str, undo: UndoData) -> None:
        match undo:
            case NudgeUndo():
                session.execute(
                    delete(Nudge).where(and_(Nudge.id == undo.created_nudge_id, Nudge.tenant_id == tenant_id))
                )
            case WorkItemUndo():
                session.execute(
                    delete(WorkItem).where(
                        and_(WorkItem.id == undo.created_work_item_id, WorkItem.tenant_id == tenant_id)
                    )
                )
            case InvoiceLockUndo():
                session.execute(
                    update(Invoice)
                    .where(and_(Invoice.id == undo.invoice_id, Invoice.tenant_id == tenant_id))
                    .values(locked_at=undo.previous_locked_at, locked_by_user_id=undo.previous_locked_by_user_id)
                )
            case WorkAssigneeUndo():
                session.execute(
                    update(WorkItem)
                    .where(and_(WorkItem.id == undo.work_item_id, WorkItem.tenant_id == tenant_id))
                    .values(assigned_to_user_id=undo.previous_assignee_id)
                )
            case _:
                raise UnsupportedActionError("Unsupported action type for undo")
        session.flush()


action_executor = ActionExecutor()
