from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from app import audit, events
from app.core.config import get_settings
from app.intelligence.actions.executors import ActionExecutor, action_executor
from app.intelligence.actions.models import AIAction
from app.intelligence.actions.payloads import dump_record, parse_payload, parse_undo
from app.intelligence.actions.proposer import ActionProposer, action_proposer
from app.intelligence.actions.schemas import (
    OPS_EXECUTABLE_KINDS,
    ActionRead,
    ActionStatus,
    PagedActions,
    ProposalSummary,
)
from app.intelligence.clock import as_utc, utcnow
from app.intelligence.errors import (
    AutomationError,
    ConflictError,
    ExecutionError,
    ForbiddenActionError,
    NotFoundError,
)
from app.metrics import observe_action_transition

logger = logging.getLogger("app.intelligence.actions")
tracer = trace.get_tracer(__name__)

ACTION_EXECUTED_EVENT = "ai.action.executed"
ACTION_FAILED_EVENT = "ai.action.failed"
ACTION_UNDONE_EVENT = "ai.action.undone"

_ENTITY_TYPE = "ai_action"
_MAX_ERROR_LENGTH = 2000


def _action_event_payload(action: AIAction) -> dict[str, Any]:
    return {
        "action_id": str(action.id),
        "insight_id": str(action.insight_id) if action.insight_id else None,
        "kind": action.kind,
        "status": action.status,
        "executed_by_user_id": action.executed_by_user_id,
        "executed_at": as_utc(action.executed_at).isoformat() if action.executed_at else None,
    }


@dataclass(slots=True)
class ActionLifecycleService:
    """Moves actions through PROPOSED -> APPROVED -> EXECUTED -> CANCELED.

    Every transition is a conditional update on the current status, so two
    callers racing on the same action get exactly one winner.
    """

    executor: ActionExecutor = field(default_factory=lambda: action_executor)
    proposer: ActionProposer = field(default_factory=lambda: action_proposer)

    def compute_actions(self, session: Session, tenant_id: str) -> ProposalSummary:
        return self.proposer.propose(session, tenant_id)

    def list_actions(
        self,
        session: Session,
        tenant_id: str,
        status: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> PagedActions:
        filters = [AIAction.tenant_id == tenant_id]
        if status is not None:
            filters.append(AIAction.status == ActionStatus(status).value)

        total = session.scalar(select(func.count()).select_from(AIAction).where(and_(*filters))) or 0
        rows = session.scalars(
            select(AIAction)
            .where(and_(*filters))
            .order_by(AIAction.created_at.desc(), AIAction.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return PagedActions(
            items=[ActionRead.model_validate(row) for row in rows],
            page=page,
            page_size=page_size,
            total=int(total),
        )

    def get_action(self, session: Session, tenant_id: str, action_id: uuid.UUID) -> ActionRead:
        return ActionRead.model_validate(self._get_or_404(session, tenant_id, action_id))

    def approve_action(
        self,
        session: Session,
        tenant_id: str,
        action_id: uuid.UUID,
        actor_user_id: str,
    ) -> ActionRead:
        action = self._get_or_404(session, tenant_id, action_id)
        now = utcnow()
        result = session.execute(
            update(AIAction)
            .where(
                and_(
                    AIAction.id == action.id,
                    AIAction.tenant_id == tenant_id,
                    AIAction.status == ActionStatus.PROPOSED.value,
                )
            )
            .values(
                status=ActionStatus.APPROVED.value,
                approved_by_user_id=actor_user_id,
                approved_at=now,
                error=None,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            session.rollback()
            raise ConflictError("Only PROPOSED actions can be approved")

        audit.record(
            tenant_id,
            actor_user_id,
            _ENTITY_TYPE,
            str(action.id),
            "AI_ACTION_APPROVED",
            before={"status": ActionStatus.PROPOSED.value},
            after={"status": ActionStatus.APPROVED.value, "kind": action.kind},
            session=session,
        )
        session.commit()
        session.refresh(action)
        observe_action_transition(action.kind, ActionStatus.APPROVED.value)
        logger.info(
            "action_approved",
            extra={"tenant_id": tenant_id, "action_id": str(action.id), "action_kind": action.kind},
        )
        return ActionRead.model_validate(action)

    def execute_action(
        self,
        session: Session,
        tenant_id: str,
        action_id: uuid.UUID,
        actor_user_id: str,
        actor_role: str | None = None,
    ) -> ActionRead:
        action = self._get_or_404(session, tenant_id, action_id)
        if actor_role == "OPS" and action.kind not in OPS_EXECUTABLE_KINDS:
            raise ForbiddenActionError("OPS cannot execute this action type")
        if action.status != ActionStatus.APPROVED.value:
            raise ConflictError("Only APPROVED actions can be executed")

        now = utcnow()
        action_pk, kind = action.id, action.kind
        # Claim is committed before the side effect runs; only one caller can win it.
        claim = session.execute(
            update(AIAction)
            .where(
                and_(
                    AIAction.id == action.id,
                    AIAction.tenant_id == tenant_id,
                    AIAction.status == ActionStatus.APPROVED.value,
                    AIAction.executed_at.is_(None),
                )
            )
            .values(executed_by_user_id=actor_user_id, executed_at=now, updated_at=now)
        )
        session.commit()
        if claim.rowcount != 1:
            raise ConflictError("Only APPROVED actions can be executed")

        started = time.perf_counter()
        with tracer.start_as_current_span("intelligence.action_execute") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("action_id", str(action_pk))
            span.set_attribute("action_kind", kind)
            try:
                payload = parse_payload(kind, action.payload)
                undo = self.executor.execute(session, tenant_id, payload, actor_user_id, now)
                window = timedelta(seconds=get_settings().action_undo_window_seconds)
                action.status = ActionStatus.EXECUTED.value
                action.undo_data = dump_record(undo) if undo is not None else None
                action.undo_expires_at = now + window if undo is not None else None
                action.error = None
                audit.record(
                    tenant_id,
                    actor_user_id,
                    _ENTITY_TYPE,
                    str(action.id),
                    "AI_ACTION_EXECUTED",
                    before={"status": ActionStatus.APPROVED.value},
                    after={"status": ActionStatus.EXECUTED.value, "kind": action.kind},
                    session=session,
                )
                session.commit()
            except Exception as exc:
                session.rollback()
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                failure = self._record_failure(session, tenant_id, action_pk, kind, actor_user_id, exc)
                if failure is exc:
                    raise
                raise failure from exc

            session.refresh(action)
            observe_action_transition(action.kind, ActionStatus.EXECUTED.value)
            logger.info(
                "action_executed",
                extra={
                    "tenant_id": tenant_id,
                    "action_id": str(action.id),
                    "action_kind": action.kind,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
        events.publish(events.build_envelope(ACTION_EXECUTED_EVENT, tenant_id, _action_event_payload(action)))
        return ActionRead.model_validate(action)

    def undo_action(
        self,
        session: Session,
        tenant_id: str,
        action_id: uuid.UUID,
        actor_user_id: str,
        now: datetime | None = None,
    ) -> ActionRead:
        action = self._get_or_404(session, tenant_id, action_id)
        if action.status != ActionStatus.EXECUTED.value:
            raise ConflictError("Only EXECUTED actions can be undone")
        if not action.undo_data or action.undo_expires_at is None:
            raise ConflictError("Action is not undoable")
        now = as_utc(now) if now is not None else utcnow()
        if now >= as_utc(action.undo_expires_at):
            raise ConflictError("Undo window expired")

        undo = parse_undo(action.kind, action.undo_data)
        try:
            result = session.execute(
                update(AIAction)
                .where(
                    and_(
                        AIAction.id == action.id,
                        AIAction.tenant_id == tenant_id,
                        AIAction.status == ActionStatus.EXECUTED.value,
                    )
                )
                .values(
                    status=ActionStatus.CANCELED.value,
                    undo_data=None,
                    undo_expires_at=None,
                    error=None,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                raise ConflictError("Only EXECUTED actions can be undone")
            self.executor.compensate(session, tenant_id, undo)
            audit.record(
                tenant_id,
                actor_user_id,
                _ENTITY_TYPE,
                str(action.id),
                "AI_ACTION_UNDO",
                before={"status": ActionStatus.EXECUTED.value},
                after={"status": ActionStatus.CANCELED.value, "kind": action.kind},
                session=session,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(action)
        observe_action_transition(action.kind, ActionStatus.CANCELED.value)
        logger.info(
            "action_undone",
            extra={"tenant_id": tenant_id, "action_id": str(action.id), "action_kind": action.kind},
        )
        events.publish(events.build_envelope(ACTION_UNDONE_EVENT, tenant_id, _action_event_payload(action)))
        return ActionRead.model_validate(action)

    def _record_failure(
        self,
        session: Session,
        tenant_id: str,
        action_id: uuid.UUID,
        kind: str,
        actor_user_id: str,
        exc: Exception,
    ) -> AutomationError:
        message = (str(exc) or exc.__class__.__name__)[:_MAX_ERROR_LENGTH]
        session.execute(
            update(AIAction)
            .where(and_(AIAction.id == action_id, AIAction.tenant_id == tenant_id))
            .values(status=ActionStatus.FAILED.value, error=message, updated_at=utcnow())
        )
        audit.record(
            tenant_id,
            actor_user_id,
            _ENTITY_TYPE,
            str(action_id),
            "AI_ACTION_FAILED",
            before={"status": ActionStatus.APPROVED.value},
            after={"status": ActionStatus.FAILED.value, "kind": kind, "error": message},
            session=session,
        )
        session.commit()
        observe_action_transition(kind, ActionStatus.FAILED.value)
        logger.warning(
            "action_execution_failed",
            extra={"tenant_id": tenant_id, "action_id": str(action_id), "action_kind": kind, "error": message},
        )
        events.publish(
            events.build_envelope(
                ACTION_FAILED_EVENT,
                tenant_id,
                {"action_id": str(action_id), "kind": kind, "status": ActionStatus.FAILED.value, "error": message},
            )
        )
        if isinstance(exc, AutomationError):
            return exc
        return ExecutionError(message)

    @staticmethod
    def _get_or_404(session: Session, tenant_id: str, action_id: uuid.UUID) -> AIAction:
        action = session.scalar(select(AIAction).where(and_(AIAction.id == action_id, AIAction.tenant_id == tenant_id)))
        if action is None:
            raise NotFoundError("AI action not found")
        return action


action_service = ActionLifecycleService()
