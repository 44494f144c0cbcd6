from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.business.workspace.gateways import StateReader, state_reader
from app.core.config import get_settings
from app.intelligence.clock import as_utc, utcnow
from app.intelligence.errors import TransientError
from app.intelligence.insights.schemas import (
    AssigneeLoad,
    CashflowMetrics,
    CriticalEvent,
    HealthTrend,
    MetricSnapshot,
    OpsMetrics,
    OverdueInvoice,
    ShieldMetrics,
    StalledDeal,
    StalledDealMetrics,
)

TOP_ROWS = 3
TOP_ASSIGNEES = 5
ASSIGNEE_SCAN_LIMIT = 500


def _days_between(later: datetime, earlier: datetime) -> int:
    return max(1, (later - earlier).days)


def _days_since(now: datetime, day: date) -> int:
    return max(1, (now.date() - day).days)


@dataclass(slots=True)
class MetricCollector:
    """Reads the tenant's current business state into a :class:`MetricSnapshot`.

    Read-only; every window is measured against the ``now`` of the call.
    Database failures surface as :class:`TransientError` so the scheduler
    retries the whole cycle.
    """

    reader: StateReader = field(default_factory=lambda: state_reader)

    def collect(self, session: Session, tenant_id: str, now: datetime | None = None) -> MetricSnapshot:
        now = as_utc(now) if now is not None else utcnow()
        try:
            return MetricSnapshot(
                tenant_id=tenant_id,
                now=now,
                stalled_deals=self._stalled_deals(session, tenant_id, now),
                cashflow=self._cashflow(session, tenant_id, now),
                ops=self._ops(session, tenant_id, now),
                shield=self._shield(session, tenant_id),
                health=self._health(session, tenant_id),
            )
        except SQLAlchemyError as exc:
            raise TransientError(details={"stage": "collect", "error": str(exc)[:500]}) from exc

    def _stalled_deals(self, session: Session, tenant_id: str, now: datetime) -> StalledDealMetrics:
        window_days = get_settings().deal_stall_days
        cutoff = now - timedelta(days=window_days)
        count = self.reader.count_stalled_deals(session, tenant_id, cutoff)
        if count == 0:
            return StalledDealMetrics(window_days=window_days)
        top = self.reader.stalled_deals(session, tenant_id, cutoff, limit=TOP_ROWS)
        return StalledDealMetrics(
            count=count,
            window_days=window_days,
            top_deals=tuple(
                StalledDeal(
                    id=str(deal.id),
                    name=deal.title,
                    days_idle=_days_between(now, as_utc(deal.updated_at)),
                    value=int(deal.value_amount or 0),
                )
                for deal in top
            ),
        )

    def _cashflow(self, session: Session, tenant_id: str, now: datetime) -> CashflowMetrics:
        window_days = get_settings().invoice_overdue_days
        cutoff = (now - timedelta(days=window_days)).date()
        count = self.reader.count_overdue_invoices(session, tenant_id, cutoff)
        if count == 0:
            return CashflowMetrics(window_days=window_days)
        top = self.reader.overdue_invoices(session, tenant_id, cutoff, limit=TOP_ROWS)
        return CashflowMetrics(
            count=count,
            window_days=window_days,
            amount=self.reader.overdue_invoice_amount(session, tenant_id, cutoff),
            top_invoices=tuple(
                OverdueInvoice(
                    id=str(invoice.id),
                    invoice_number=invoice.invoice_number,
                    days_overdue=_days_since(now, invoice.due_date),
                    amount=float(invoice.amount),
                )
                for invoice in top
            ),
        )

    def _ops(self, session: Session, tenant_id: str, now: datetime) -> OpsMetrics:
        today = now.date()
        count = self.reader.count_overdue_work_items(session, tenant_id, today)
        if count == 0:
            return OpsMetrics()
        assignees = self.reader.overdue_work_assignees(session, tenant_id, today, limit=ASSIGNEE_SCAN_LIMIT)
        ranked = sorted(Counter(assignees).items(), key=lambda item: (-item[1], item[0]))
        return OpsMetrics(
            count=count,
            by_assignee=tuple(AssigneeLoad(user_id=user_id, count=n) for user_id, n in ranked[:TOP_ASSIGNEES]),
        )

    def _shield(self, session: Session, tenant_id: str) -> ShieldMetrics:
        count = self.reader.count_critical_security_events(session, tenant_id)
        if count == 0:
            return ShieldMetrics()
        recent = self.reader.recent_critical_security_events(session, tenant_id, limit=TOP_ROWS)
        return ShieldMetrics(
            count=count,
            recent=tuple(
                CriticalEvent(id=str(event.id), type=event.type, created_at=as_utc(event.created_at).isoformat())
                for event in recent
            ),
        )

    def _health(self, session: Session, tenant_id: str) -> HealthTrend:
        scores = self.reader.recent_health_scores(session, tenant_id, limit=2)
        if len(scores) < 2:
            return HealthTrend()
        return HealthTrend(has_data=True, latest_score=scores[0], previous_score=scores[1])


metric_collector = MetricCollector()
