from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from app.business.workspace.gateways import (
    FEATURE_AUTOPILOT,
    FeatureGate,
    PolicyReader,
    StateReader,
    feature_gate,
    policy_reader,
    state_reader,
)
from app.core.config import get_settings
from app.intelligence.actions.models import AIAction
from app.intelligence.actions.payloads import CreateNudgePayload, LockInvoicePayload, dump_record
from app.intelligence.actions.schemas import ActionKind, ActionStatus, ProposalSummary
from app.intelligence.insights.models import AIInsight
from app.intelligence.insights.schemas import InsightKind
from app.metrics import observe_action_transition

logger = logging.getLogger("app.intelligence.actions")

_OPEN_STATUSES = (ActionStatus.PROPOSED.value, ActionStatus.APPROVED.value)


@dataclass(frozen=True, slots=True)
class Proposal:
    kind: ActionKind
    title: str
    rationale: str
    payload: BaseModel


def _nudge(title: str, rationale: str, **fields: str) -> Proposal:
    return Proposal(
        kind=ActionKind.CREATE_NUDGE,
        title=title,
        rationale=rationale,
        payload=CreateNudgePayload(**fields),
    )


@dataclass(slots=True)
class ActionProposer:
    reader: StateReader = field(default_factory=lambda: state_reader)
    policies: PolicyReader = field(default_factory=lambda: policy_reader)
    gate: FeatureGate = field(default_factory=lambda: feature_gate)

    def propose(self, session: Session, tenant_id: str) -> ProposalSummary:
        """Turn the newest open insights into PROPOSED actions.

        An insight never gets a second open (PROPOSED or APPROVED) action of
        the same kind, so repeated cycles converge.
        """
        self.gate.assert_feature_enabled(session, tenant_id, FEATURE_AUTOPILOT)
        limit = get_settings().proposal_insight_limit
        lock_on_sent = self.policies.lock_invoice_on_sent(session, tenant_id)

        insights = session.scalars(
            select(AIInsight)
            .where(and_(AIInsight.tenant_id == tenant_id, AIInsight.is_resolved.is_(False)))
            .order_by(AIInsight.created_at.desc(), AIInsight.id.desc())
            .limit(limit)
        ).all()

        created = 0
        skipped = 0
        try:
            for insight in insights:
                for proposal in self.build_proposals(session, tenant_id, insight, lock_on_sent):
                    if self._has_open_action(session, tenant_id, insight, proposal.kind):
                        skipped += 1
                        continue
                    session.add(
                        AIAction(
                            tenant_id=tenant_id,
                            insight_id=insight.id,
                            kind=proposal.kind.value,
                            status=ActionStatus.PROPOSED.value,
                            title=proposal.title,
                            rationale=proposal.rationale,
                            payload=dump_record(proposal.payload),
                        )
                    )
                    # flush so a second proposal of the same kind for this insight is seen as open
                    session.flush()
                    observe_action_transition(proposal.kind.value, ActionStatus.PROPOSED.value)
                    created += 1
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.exception("action_proposal_failed", extra={"tenant_id": tenant_id, "error": str(exc)[:500]})
            raise

        total_open = session.scalar(
            select(func.count())
            .select_from(AIAction)
            .where(and_(AIAction.tenant_id == tenant_id, AIAction.status == ActionStatus.PROPOSED.value))
        ) or 0
        logger.info(
            "action_proposal_completed",
            extra={"tenant_id": tenant_id, "created_count": created, "skipped_count": skipped},
        )
        return ProposalSummary(created=created, skipped=skipped, total_open=int(total_open))

    def build_proposals(
        self,
        session: Session,
        tenant_id: str,
        insight: AIInsight,
        lock_on_sent: bool,
    ) -> list[Proposal]:
        entity_id = str(insight.id)
        match insight.kind:
            case InsightKind.DEAL_STALL.value:
                return [
                    _nudge(
                        "Nudge Sales on stalled deals",
                        insight.explanation,
                        target_role="SALES",
                        message="Follow up on stalled deals",
                        link="/sales/deals?filter=stale",
                        entity_type="DEAL",
                        entity_id=entity_id,
                    )
                ]
            case InsightKind.CASHFLOW_ALERT.value:
                proposals = [
                    _nudge(
                        "Nudge Finance on overdue invoices",
                        insight.explanation,
                        target_role="FINANCE",
                        message="Overdue invoices need follow-up",
                        link="/finance/invoices?filter=overdue",
                        entity_type="INVOICE",
                        entity_id=entity_id,
                    )
                ]
                if lock_on_sent:
                    invoice = self.reader.most_at_risk_unlocked_invoice(session, tenant_id)
                    if invoice is not None:
                        proposals.append(
                            Proposal(
                                kind=ActionKind.LOCK_INVOICE,
                                title="Lock highest-risk overdue invoice",
                                rationale="Invoice is sent but still unlocked under cashflow risk.",
                                payload=LockInvoicePayload(invoice_id=invoice.id),
                            )
                        )
                return proposals
            case InsightKind.OPS_RISK.value:
                return [
                    _nudge(
                        "Nudge Ops on overdue workload",
                        insight.explanation,
                        target_role="OPS",
                        message="Overdue work items need prioritizing today",
                        link="/ops/work?filter=overdue",
                        entity_type="WORK_ITEM",
                        entity_id=entity_id,
                    )
                ]
            case InsightKind.SHIELD_RISK.value:
                return [
                    _nudge(
                        "Escalate critical shield events",
                        insight.explanation,
                        target_role="CEO",
                        message="Critical security events require attention",
                        link="/shield",
                        entity_type="AUTH",
                        entity_id=tenant_id,
                    )
                ]
            case InsightKind.HEALTH_DROP.value:
                return [
                    _nudge(
                        "Escalate execution score drop",
                        insight.explanation,
                        target_role="CEO",
                        message="Execution score dropped, review top blockers",
                        link="/ceo/action-mode",
                        entity_type="POLICY",
                        entity_id=tenant_id,
                    )
                ]
        return []

    @staticmethod
    def _has_open_action(session: Session, tenant_id: str, insight: AIInsight, kind: ActionKind) -> bool:
        existing = session.scalar(
            select(AIAction.id)
            .where(
                and_(
                    AIAction.tenant_id == tenant_id,
                    AIAction.insight_id == insight.id,
                    AIAction.kind == kind.value,
                    AIAction.status.in_(_OPEN_STATUSES),
                )
            )
            .limit(1)
        )
        return existing is not None


action_proposer = ActionProposer()
