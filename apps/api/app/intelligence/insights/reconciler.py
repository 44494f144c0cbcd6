from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from app.intelligence.insights.models import AIInsight
from app.intelligence.insights.schemas import InsightCandidate, InsightKind

AUTO_RESOLVE_NOTE = "Auto-resolved by deterministic compute run."


@dataclass(slots=True)
class ReconcileResult:
    created: list[AIInsight] = field(default_factory=list)
    refreshed: int = 0
    resolved: int = 0


class InsightReconciler:
    """Upserts candidates against open insights, keeping one open row per (tenant, kind).

    Runs inside the caller's transaction; nothing here commits.
    """

    def reconcile(
        self,
        session: Session,
        tenant_id: str,
        candidates: list[InsightCandidate],
        now: datetime,
    ) -> ReconcileResult:
        result = ReconcileResult()
        active_kinds: set[str] = set()

        for candidate in candidates:
            kind = InsightKind(candidate.kind).value
            active_kinds.add(kind)
            open_rows = self._open_rows(session, tenant_id, kind)

            if not open_rows:
                insight = AIInsight(tenant_id=tenant_id, kind=kind, is_resolved=False, resolved_at=None, created_at=now)
                self._apply(insight, candidate)
                session.add(insight)
                result.created.append(insight)
                continue

            primary, *duplicates = open_rows
            self._apply(primary, candidate)
            primary.created_at = now
            primary.is_resolved = False
            primary.resolved_at = None
            result.refreshed += 1

            for duplicate in duplicates:
                duplicate.is_resolved = True
                duplicate.resolved_at = now
                result.resolved += 1

        for kind in InsightKind:
            if kind.value in active_kinds:
                continue
            outcome = session.execute(
                update(AIInsight)
                .where(
                    and_(
                        AIInsight.tenant_id == tenant_id,
                        AIInsight.kind == kind.value,
                        AIInsight.is_resolved.is_(False),
                    )
                )
                .values(is_resolved=True, resolved_at=now, meta={"note": AUTO_RESOLVE_NOTE})
                .execution_options(synchronize_session="fetch")
            )
            result.resolved += outcome.rowcount or 0

        session.flush()
        return result

    @staticmethod
    def _open_rows(session: Session, tenant_id: str, kind: str) -> list[AIInsight]:
        stmt = (
            select(AIInsight)
            .where(
                and_(
                    AIInsight.tenant_id == tenant_id,
                    AIInsight.kind == kind,
                    AIInsight.is_resolved.is_(False),
                )
            )
            .order_by(AIInsight.created_at.desc(), AIInsight.id.desc())
        )
        return list(session.scalars(stmt).all())

    @staticmethod
    def _apply(insight: AIInsight, candidate: InsightCandidate) -> None:
        meta: dict[str, Any] = dict(candidate.meta)
        insight.severity = candidate.severity.name
        insight.score_impact = candidate.score_impact
        insight.title = candidate.title
        insight.explanation = candidate.explanation
        insight.subject_type = candidate.subject_type
        insight.subject_id = candidate.subject_id
        insight.meta = meta


insight_reconciler = InsightReconciler()
