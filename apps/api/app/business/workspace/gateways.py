"""Narrow read/write interfaces over tenant business state.

The automation engine never queries collaborator tables directly; it goes
through these gateways so the CRUD side of the platform can evolve on its own.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from app.business.workspace.models import (
    Deal,
    HealthSnapshot,
    Invoice,
    SecurityEvent,
    TenantFeature,
    TenantPolicy,
    WorkItem,
    WorkspaceUser,
)
from app.core.config import get_settings
from app.intelligence.errors import FeatureDisabledError, NotFoundError

FEATURE_REVENUE_INTELLIGENCE = "revenue_intelligence"
FEATURE_AUTOPILOT = "autopilot"


@dataclass(slots=True)
class StateReader:
    def count_stalled_deals(self, session: Session, tenant_id: str, cutoff: datetime) -> int:
        return session.scalar(select(func.count()).select_from(Deal).where(self._stalled_deal_filter(tenant_id, cutoff))) or 0

    def stalled_deals(self, session: Session, tenant_id: str, cutoff: datetime, *, limit: int) -> list[Deal]:
        stmt = select(Deal).where(self._stalled_deal_filter(tenant_id, cutoff)).order_by(Deal.updated_at.asc(), Deal.id.asc())
        return list(session.scalars(stmt.limit(limit)).all())

    def count_overdue_invoices(self, session: Session, tenant_id: str, cutoff: date) -> int:
        return session.scalar(
            select(func.count()).select_from(Invoice).where(self._overdue_invoice_filter(tenant_id, cutoff))
        ) or 0

    def overdue_invoice_amount(self, session: Session, tenant_id: str, cutoff: date) -> float:
        total = session.scalar(
            select(func.coalesce(func.sum(Invoice.amount), 0)).where(self._overdue_invoice_filter(tenant_id, cutoff))
        )
        return float(total or 0)

    def overdue_invoices(self, session: Session, tenant_id: str, cutoff: date, *, limit: int) -> list[Invoice]:
        stmt = select(Invoice).where(self._overdue_invoice_filter(tenant_id, cutoff)).order_by(Invoice.due_date.asc(), Invoice.id.asc())
        return list(session.scalars(stmt.limit(limit)).all())

    def count_overdue_work_items(self, session: Session, tenant_id: str, today: date) -> int:
        return session.scalar(
            select(func.count()).select_from(WorkItem).where(self._overdue_work_filter(tenant_id, today))
        ) or 0

    def overdue_work_assignees(self, session: Session, tenant_id: str, today: date, *, limit: int) -> list[str]:
        stmt = (
            select(WorkItem.assigned_to_user_id)
            .where(self._overdue_work_filter(tenant_id, today), WorkItem.assigned_to_user_id.is_not(None))
            .limit(limit)
        )
        return [str(value) for value in session.scalars(stmt).all() if value]

    def count_critical_security_events(self, session: Session, tenant_id: str) -> int:
        return session.scalar(
            select(func.count()).select_from(SecurityEvent).where(self._critical_security_filter(tenant_id))
        ) or 0

    def recent_critical_security_events(self, session: Session, tenant_id: str, *, limit: int) -> list[SecurityEvent]:
        stmt = (
            select(SecurityEvent)
            .where(self._critical_security_filter(tenant_id))
            .order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.asc())
            .limit(limit)
        )
        return list(session.scalars(stmt).all())

    def recent_health_scores(self, session: Session, tenant_id: str, *, limit: int = 2) -> list[int]:
        stmt = (
            select(HealthSnapshot.score)
            .where(HealthSnapshot.tenant_id == tenant_id)
            .order_by(HealthSnapshot.computed_at.desc())
            .limit(limit)
        )
        return [int(score) for score in session.scalars(stmt).all()]

    def most_at_risk_unlocked_invoice(self, session: Session, tenant_id: str) -> Invoice | None:
        return session.scalar(
            select(Invoice)
            .where(
                and_(
                    Invoice.tenant_id == tenant_id,
                    Invoice.status == "SENT",
                    Invoice.locked_at.is_(None),
                )
            )
            .order_by(Invoice.due_date.asc(), Invoice.id.asc())
            .limit(1)
        )

    @staticmethod
    def _stalled_deal_filter(tenant_id: str, cutoff: datetime):  # type: ignore[no-untyped-def]
        return and_(Deal.tenant_id == tenant_id, Deal.stage == "OPEN", Deal.updated_at < cutoff)

    @staticmethod
    def _overdue_invoice_filter(tenant_id: str, cutoff: date):  # type: ignore[no-untyped-def]
        return and_(Invoice.tenant_id == tenant_id, Invoice.status != "PAID", Invoice.due_date < cutoff)

    @staticmethod
    def _overdue_work_filter(tenant_id: str, today: date):  # type: ignore[no-untyped-def]
        return and_(WorkItem.tenant_id == tenant_id, WorkItem.status != "DONE", WorkItem.due_date < today)

    @staticmethod
    def _critical_security_filter(tenant_id: str):  # type: ignore[no-untyped-def]
        return and_(
            SecurityEvent.tenant_id == tenant_id,
            SecurityEvent.severity == "CRITICAL",
            SecurityEvent.resolved_at.is_(None),
        )


@dataclass(slots=True)
class FeatureGate:
    def is_enabled(self, session: Session, tenant_id: str, feature_key: str) -> bool:
        if get_settings().feature_gate_disabled:
            return True
        enabled = session.scalar(
            select(TenantFeature.enabled).where(
                and_(TenantFeature.tenant_id == tenant_id, TenantFeature.feature_key == feature_key)
            )
        )
        return bool(enabled)

    def assert_feature_enabled(self, session: Session, tenant_id: str, feature_key: str) -> None:
        if not self.is_enabled(session, tenant_id, feature_key):
            raise FeatureDisabledError(
                "Upgrade required to use this feature",
                details={"feature": feature_key},
            )


@dataclass(slots=True)
class IdentityResolver:
    def find_active_user_by_role(self, session: Session, tenant_id: str, role: str) -> WorkspaceUser:
        user = session.scalar(
            select(WorkspaceUser)
            .where(
                and_(
                    WorkspaceUser.tenant_id == tenant_id,
                    WorkspaceUser.role == role,
                    WorkspaceUser.is_active.is_(True),
                )
            )
            .order_by(WorkspaceUser.created_at.asc(), WorkspaceUser.id.asc())
            .limit(1)
        )
        if user is None:
            raise NotFoundError(f"No active {role} user found for action execution")
        return user


@dataclass(slots=True)
class PolicyReader:
    def lock_invoice_on_sent(self, session: Session, tenant_id: str) -> bool:
        value = session.scalar(select(TenantPolicy.lock_invoice_on_sent).where(TenantPolicy.tenant_id == tenant_id))
        return bool(value)


def parse_entity_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


state_reader = StateReader()
feature_gate = FeatureGate()
identity_resolver = IdentityResolver()
policy_reader = PolicyReader()
