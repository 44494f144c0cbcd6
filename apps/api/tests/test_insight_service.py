from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.business.workspace.gateways import FEATURE_REVENUE_INTELLIGENCE
from app.business.workspace.models import Deal, HealthSnapshot, SecurityEvent, TenantFeature
from app.core.config import get_settings
from app.core.database import Base
from app.intelligence.errors import FeatureDisabledError, NotFoundError
from app.intelligence.insights.models import AIInsight
from app.intelligence.insights.reconciler import AUTO_RESOLVE_NOTE, InsightReconciler
from app.intelligence.insights.service import INSIGHT_CREATED_EVENT, InsightService, insight_service

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("WEBHOOK_DISPATCH_MODE", "disabled")
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


def _enable_feature(session: Session, tenant_id: str = "tenant-a") -> None:
    session.add(TenantFeature(tenant_id=tenant_id, feature_key=FEATURE_REVENUE_INTELLIGENCE, enabled=True))
    session.commit()


def _seed_stalled_deals(session: Session, count: int, tenant_id: str = "tenant-a") -> list[Deal]:
    deals = [
        Deal(tenant_id=tenant_id, title=f"Deal {index}", stage="OPEN", updated_at=NOW - timedelta(days=20 + index))
        for index in range(count)
    ]
    session.add_all(deals)
    session.commit()
    return deals


def _open_insights(session: Session, kind: str | None = None) -> list[AIInsight]:
    stmt = select(AIInsight).where(AIInsight.is_resolved.is_(False))
    if kind is not None:
        stmt = stmt.where(AIInsight.kind == kind)
    return list(session.scalars(stmt).all())


def test_cycle_creates_insight_and_publishes_event(db_session: Session) -> None:
    _enable_feature(db_session)
    _seed_stalled_deals(db_session, 12)

    result = insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    assert result.created_count == 1
    assert result.resolved_count == 0
    assert result.summary.total == 1
    assert result.summary.critical == 1

    [insight] = _open_insights(db_session)
    assert insight.kind == "DEAL_STALL"
    assert insight.severity == "CRITICAL"
    assert insight.score_impact == 40
    assert insight.meta["stalled_deals"] == 12

    created_events = [item for item in events.published_events if item["event_type"] == INSIGHT_CREATED_EVENT]
    assert len(created_events) == 1
    assert created_events[0]["tenant_id"] == "tenant-a"
    assert created_events[0]["payload"]["insight_id"] == str(insight.id)
    assert created_events[0]["payload"]["kind"] == "DEAL_STALL"


def test_repeated_cycle_refreshes_instead_of_duplicating(db_session: Session) -> None:
    _enable_feature(db_session)
    _seed_stalled_deals(db_session, 3)

    first = insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)
    later = NOW + timedelta(hours=6)
    second = insight_service.run_insight_cycle(db_session, "tenant-a", now=later)

    assert first.created_count == 1
    assert second.created_count == 0
    assert second.resolved_count == 0

    [insight] = _open_insights(db_session, "DEAL_STALL")
    assert insight.created_at.replace(tzinfo=timezone.utc) == later
    created_events = [item for item in events.published_events if item["event_type"] == INSIGHT_CREATED_EVENT]
    assert len(created_events) == 1


def test_refresh_picks_up_new_severity(db_session: Session) -> None:
    _enable_feature(db_session)
    _seed_stalled_deals(db_session, 1)
    insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    _seed_stalled_deals(db_session, 10)
    insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW + timedelta(hours=1))

    [insight] = _open_insights(db_session, "DEAL_STALL")
    assert insight.severity == "CRITICAL"
    assert insight.meta["stalled_deals"] == 11


def test_cleared_condition_is_auto_resolved_with_note(db_session: Session) -> None:
    _enable_feature(db_session)
    deals = _seed_stalled_deals(db_session, 2)
    insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    db_session.execute(update(Deal).where(Deal.id.in_([deal.id for deal in deals])).values(stage="WON"))
    db_session.commit()

    result = insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW + timedelta(hours=1))

    assert result.created_count == 0
    assert result.resolved_count == 1
    assert result.summary.total == 0
    insight = db_session.scalar(select(AIInsight).where(AIInsight.kind == "DEAL_STALL"))
    assert insight is not None
    assert insight.is_resolved is True
    assert insight.resolved_at is not None
    assert insight.meta == {"note": AUTO_RESOLVE_NOTE}


def test_duplicate_open_rows_collapse_to_newest(db_session: Session) -> None:
    _enable_feature(db_session)
    _seed_stalled_deals(db_session, 2)
    older = AIInsight(
        tenant_id="tenant-a",
        kind="DEAL_STALL",
        severity="LOW",
        score_impact=1,
        title="old",
        explanation="old",
        created_at=NOW - timedelta(days=2),
    )
    newer = AIInsight(
        tenant_id="tenant-a",
        kind="DEAL_STALL",
        severity="LOW",
        score_impact=1,
        title="newer",
        explanation="newer",
        created_at=NOW - timedelta(days=1),
    )
    db_session.add_all([older, newer])
    db_session.commit()

    result = insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    assert result.created_count == 0
    assert result.resolved_count == 1
    [survivor] = _open_insights(db_session, "DEAL_STALL")
    assert survivor.id == newer.id
    assert survivor.title == "Deals stalling in pipeline"


def test_tenants_are_isolated(db_session: Session) -> None:
    _enable_feature(db_session, "tenant-a")
    _enable_feature(db_session, "tenant-b")
    _seed_stalled_deals(db_session, 2, tenant_id="tenant-b")
    db_session.add(SecurityEvent(tenant_id="tenant-a", type="MFA_DISABLED", severity="CRITICAL"))
    db_session.commit()

    insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)
    insight_service.run_insight_cycle(db_session, "tenant-b", now=NOW)

    kinds_by_tenant = {(row.tenant_id, row.kind) for row in _open_insights(db_session)}
    assert kinds_by_tenant == {("tenant-a", "SHIELD_RISK"), ("tenant-b", "DEAL_STALL")}


def test_cycle_requires_revenue_intelligence_feature(db_session: Session) -> None:
    _seed_stalled_deals(db_session, 2)

    with pytest.raises(FeatureDisabledError) as exc_info:
        insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    assert exc_info.value.status_code == 402
    assert exc_info.value.details == {"feature": FEATURE_REVENUE_INTELLIGENCE}
    assert _open_insights(db_session) == []


def test_feature_gate_can_be_bypassed_by_settings(db_session: Session) -> None:
    _seed_stalled_deals(db_session, 2)
    settings = get_settings()
    prior = settings.feature_gate_disabled
    settings.feature_gate_disabled = True
    try:
        result = insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)
    finally:
        settings.feature_gate_disabled = prior

    assert result.created_count == 1


class _ExplodingReconciler(InsightReconciler):
    def reconcile(self, session, tenant_id, candidates, now):  # type: ignore[no-untyped-def]
        session.add(
            AIInsight(tenant_id=tenant_id, kind="OPS_RISK", severity="LOW", title="partial", explanation="partial")
        )
        session.flush()
        raise RuntimeError("reconcile exploded")


def test_failed_cycle_rolls_back_and_logs(db_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    _enable_feature(db_session)
    _seed_stalled_deals(db_session, 2)
    service = InsightService(reconciler=_ExplodingReconciler())

    with pytest.raises(RuntimeError):
        service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    assert _open_insights(db_session) == []
    assert events.published_events == []
    records = [record for record in caplog.records if record.name == "app.intelligence.insights"]
    assert any(
        record.getMessage() == "insight_cycle_failed" and getattr(record, "tenant_id", None) == "tenant-a"
        for record in records
    )


def test_list_orders_by_severity_then_score_then_recency(db_session: Session) -> None:
    rows = [
        ("LOW", 90, NOW),
        ("CRITICAL", 10, NOW - timedelta(days=3)),
        ("HIGH", 50, NOW - timedelta(days=2)),
        ("HIGH", 50, NOW - timedelta(days=1)),
        ("HIGH", 70, NOW - timedelta(days=5)),
    ]
    for index, (severity, score, created_at) in enumerate(rows):
        db_session.add(
            AIInsight(
                tenant_id="tenant-a",
                kind="OPS_RISK",
                severity=severity,
                score_impact=score,
                title=f"row-{index}",
                explanation="",
                created_at=created_at,
            )
        )
    db_session.add(
        AIInsight(tenant_id="tenant-a", kind="OPS_RISK", severity="CRITICAL", title="resolved", explanation="", is_resolved=True)
    )
    db_session.commit()

    listed = insight_service.list_open_insights(db_session, "tenant-a")

    assert [item.title for item in listed] == ["row-1", "row-4", "row-3", "row-2", "row-0"]


def test_resolve_insight_audits_once(db_session: Session) -> None:
    insight = AIInsight(tenant_id="tenant-a", kind="SHIELD_RISK", severity="CRITICAL", title="t", explanation="e")
    db_session.add(insight)
    db_session.commit()

    first = insight_service.resolve_insight(db_session, "tenant-a", insight.id, "ceo-1")
    second = insight_service.resolve_insight(db_session, "tenant-a", insight.id, "ceo-1")

    assert first.success is True
    assert second.success is True
    db_session.refresh(insight)
    assert insight.is_resolved is True
    assert insight.resolved_at is not None

    resolved_audits = [entry for entry in audit.audit_entries if entry["action"] == "AI_INSIGHT_RESOLVED"]
    assert len(resolved_audits) == 1
    assert resolved_audits[0]["actor_user_id"] == "ceo-1"
    assert resolved_audits[0]["entity_id"] == str(insight.id)


def test_resolve_insight_of_other_tenant_is_not_found(db_session: Session) -> None:
    insight = AIInsight(tenant_id="tenant-b", kind="SHIELD_RISK", severity="CRITICAL", title="t", explanation="e")
    db_session.add(insight)
    db_session.commit()

    with pytest.raises(NotFoundError):
        insight_service.resolve_insight(db_session, "tenant-a", insight.id, "ceo-1")
    with pytest.raises(NotFoundError):
        insight_service.resolve_insight(db_session, "tenant-a", uuid.uuid4(), "ceo-1")


def test_summary_counts_open_by_severity(db_session: Session) -> None:
    _enable_feature(db_session)
    _seed_stalled_deals(db_session, 2)
    db_session.add_all(
        [
            SecurityEvent(tenant_id="tenant-a", type="MFA_DISABLED", severity="CRITICAL"),
            HealthSnapshot(tenant_id="tenant-a", score=90, computed_at=NOW - timedelta(days=2)),
            HealthSnapshot(tenant_id="tenant-a", score=60, computed_at=NOW - timedelta(days=1)),
        ]
    )
    db_session.commit()

    result = insight_service.run_insight_cycle(db_session, "tenant-a", now=NOW)

    assert result.created_count == 3
    assert result.summary.total == 3
    assert result.summary.critical == 2
    assert result.summary.medium == 1
    assert result.summary.high == 0
