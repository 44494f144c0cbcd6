from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import audit, events
from app.context import get_correlation_id
from app.business.workspace.gateways import FEATURE_REVENUE_INTELLIGENCE, FeatureGate, feature_gate
from app.intelligence.clock import as_utc, utcnow
from app.intelligence.errors import NotFoundError, TransientError
from app.intelligence.insights.collector import MetricCollector, metric_collector
from app.intelligence.insights.models import AIInsight
from app.intelligence.insights.reconciler import InsightReconciler, insight_reconciler
from app.intelligence.insights.schemas import (
    InsightCycleResult,
    InsightRead,
    InsightSummary,
    ResolveInsightResponse,
    Severity,
)
from app.intelligence.insights.synthesizer import synthesize
from app.metrics import observe_insight_created, observe_insight_cycle, observe_insights_resolved

logger = logging.getLogger("app.intelligence.insights")
tracer = trace.get_tracer(__name__)

INSIGHT_CREATED_EVENT = "ai.insight.created"


def _insight_event_payload(insight: AIInsight) -> dict[str, object]:
    return {
        "insight_id": str(insight.id),
        "kind": insight.kind,
        "severity": insight.severity,
        "score_impact": insight.score_impact,
        "title": insight.title,
        "subject_type": insight.subject_type,
        "subject_id": insight.subject_id,
    }


@dataclass(slots=True)
class InsightService:
    collector: MetricCollector = field(default_factory=lambda: metric_collector)
    reconciler: InsightReconciler = field(default_factory=lambda: insight_reconciler)
    gate: FeatureGate = field(default_factory=lambda: feature_gate)

    def run_insight_cycle(self, session: Session, tenant_id: str, now: datetime | None = None) -> InsightCycleResult:
        """Collect, synthesize and reconcile in one transaction.

        Creation events go out only after the commit, so subscribers never see
        an insight that was rolled back.
        """
        self.gate.assert_feature_enabled(session, tenant_id, FEATURE_REVENUE_INTELLIGENCE)
        started = time.perf_counter()

        with tracer.start_as_current_span("intelligence.insight_cycle") as span:
            span.set_attribute("tenant_id", tenant_id)
            correlation_id = get_correlation_id()
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)
            try:
                snapshot = self.collector.collect(session, tenant_id, now)
                candidates = synthesize(snapshot)
                result = self.reconciler.reconcile(session, tenant_id, candidates, snapshot.now)
                session.commit()
            except Exception as exc:
                session.rollback()
                observe_insight_cycle("failed", time.perf_counter() - started)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.exception("insight_cycle_failed", extra={"tenant_id": tenant_id, "error": str(exc)[:500]})
                if isinstance(exc, SQLAlchemyError):
                    raise TransientError() from exc
                raise

            for insight in result.created:
                observe_insight_created(insight.kind)
                events.publish(events.build_envelope(INSIGHT_CREATED_EVENT, tenant_id, _insight_event_payload(insight)))
            observe_insights_resolved(result.resolved)
            observe_insight_cycle("succeeded", time.perf_counter() - started)

            span.set_attribute("created_count", len(result.created))
            span.set_attribute("resolved_count", result.resolved)
            logger.info(
                "insight_cycle_completed",
                extra={
                    "tenant_id": tenant_id,
                    "created_count": len(result.created),
                    "resolved_count": result.resolved,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )

        return InsightCycleResult(
            created_count=len(result.created),
            resolved_count=result.resolved,
            summary=self.get_summary(session, tenant_id),
        )

    def list_open_insights(self, session: Session, tenant_id: str) -> list[InsightRead]:
        rows = session.scalars(
            select(AIInsight).where(and_(AIInsight.tenant_id == tenant_id, AIInsight.is_resolved.is_(False)))
        ).all()
        ordered = sorted(
            rows,
            key=lambda row: (Severity.parse(row.severity), row.score_impact, as_utc(row.created_at)),
            reverse=True,
        )
        return [InsightRead.model_validate(row) for row in ordered]

    def resolve_insight(
        self,
        session: Session,
        tenant_id: str,
        insight_id: uuid.UUID,
        actor_user_id: str,
    ) -> ResolveInsightResponse:
        insight = session.scalar(
            select(AIInsight).where(and_(AIInsight.id == insight_id, AIInsight.tenant_id == tenant_id))
        )
        if insight is None:
            raise NotFoundError("Insight not found")
        if insight.is_resolved:
            return ResolveInsightResponse(success=True)

        insight.is_resolved = True
        insight.resolved_at = utcnow()
        audit.record(
            tenant_id,
            actor_user_id,
            "ai_insight",
            str(insight.id),
            "AI_INSIGHT_RESOLVED",
            before={"is_resolved": False},
            after={"is_resolved": True, "kind": insight.kind},
            session=session,
        )
        session.commit()
        observe_insights_resolved(1)
        logger.info("insight_resolved", extra={"tenant_id": tenant_id, "insight_kind": insight.kind})
        return ResolveInsightResponse(success=True)

    def get_summary(self, session: Session, tenant_id: str) -> InsightSummary:
        rows = session.execute(
            select(AIInsight.severity, func.count())
            .where(and_(AIInsight.tenant_id == tenant_id, AIInsight.is_resolved.is_(False)))
            .group_by(AIInsight.severity)
        ).all()
        counts = {str(severity).lower(): int(count) for severity, count in rows}
        return InsightSummary(
            total=sum(counts.values()),
            critical=counts.get("critical", 0),
            high=counts.get("high", 0),
            medium=counts.get("medium", 0),
            low=counts.get("low", 0),
        )


insight_service = InsightService()
