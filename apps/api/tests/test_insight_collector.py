from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.workspace.gateways import StateReader
from app.business.workspace.models import Deal, HealthSnapshot, Invoice, SecurityEvent, WorkItem
from app.core.config import get_settings
from app.core.database import Base
from app.intelligence.errors import TransientError
from app.intelligence.insights.collector import MetricCollector
from app.intelligence.insights.schemas import AssigneeLoad

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _seed_deals(session: Session) -> None:
    session.add_all(
        [
            Deal(tenant_id="tenant-a", title="Idle 20", stage="OPEN", value_amount=500, updated_at=NOW - timedelta(days=20)),
            Deal(tenant_id="tenant-a", title="Idle 30", stage="OPEN", value_amount=900, updated_at=NOW - timedelta(days=30)),
            Deal(tenant_id="tenant-a", title="Won long ago", stage="WON", updated_at=NOW - timedelta(days=40)),
            Deal(tenant_id="tenant-a", title="Fresh", stage="OPEN", updated_at=NOW - timedelta(days=3)),
            Deal(tenant_id="tenant-b", title="Other tenant", stage="OPEN", updated_at=NOW - timedelta(days=60)),
        ]
    )


def _seed_invoices(session: Session) -> None:
    session.add_all(
        [
            Invoice(tenant_id="tenant-a", invoice_number="INV-10", status="SENT", amount=Decimal("1000.50"), due_date=TODAY - timedelta(days=10)),
            Invoice(tenant_id="tenant-a", invoice_number="INV-30", status="SENT", amount=Decimal("2000.00"), due_date=TODAY - timedelta(days=30)),
            Invoice(tenant_id="tenant-a", invoice_number="INV-PAID", status="PAID", amount=Decimal("5000.00"), due_date=TODAY - timedelta(days=30)),
            Invoice(tenant_id="tenant-a", invoice_number="INV-3", status="SENT", amount=Decimal("700.00"), due_date=TODAY - timedelta(days=3)),
        ]
    )


def _seed_work(session: Session) -> None:
    yesterday = TODAY - timedelta(days=1)
    session.add_all(
        [
            WorkItem(tenant_id="tenant-a", title="a", status="TODO", due_date=yesterday, assigned_to_user_id="u-2", created_by_user_id="seed"),
            WorkItem(tenant_id="tenant-a", title="b", status="TODO", due_date=yesterday, assigned_to_user_id="u-1", created_by_user_id="seed"),
            WorkItem(tenant_id="tenant-a", title="c", status="IN_PROGRESS", due_date=yesterday, assigned_to_user_id="u-1", created_by_user_id="seed"),
            WorkItem(tenant_id="tenant-a", title="d", status="TODO", due_date=yesterday, created_by_user_id="seed"),
            WorkItem(tenant_id="tenant-a", title="done", status="DONE", due_date=yesterday, assigned_to_user_id="u-3", created_by_user_id="seed"),
            WorkItem(tenant_id="tenant-a", title="future", status="TODO", due_date=TODAY + timedelta(days=2), created_by_user_id="seed"),
        ]
    )


def test_collect_reads_every_signal(db_session: Session) -> None:
    _seed_deals(db_session)
    _seed_invoices(db_session)
    _seed_work(db_session)
    db_session.add_all(
        [
            SecurityEvent(tenant_id="tenant-a", type="LOGIN_BRUTE_FORCE", severity="CRITICAL", created_at=NOW - timedelta(hours=2)),
            SecurityEvent(tenant_id="tenant-a", type="OLD", severity="CRITICAL", resolved_at=NOW, created_at=NOW - timedelta(days=2)),
            SecurityEvent(tenant_id="tenant-a", type="NOISE", severity="HIGH", created_at=NOW),
            HealthSnapshot(tenant_id="tenant-a", score=80, computed_at=NOW - timedelta(days=2)),
            HealthSnapshot(tenant_id="tenant-a", score=65, computed_at=NOW - timedelta(days=1)),
        ]
    )
    db_session.commit()

    snapshot = MetricCollector().collect(db_session, "tenant-a", NOW)

    assert snapshot.now == NOW
    assert snapshot.stalled_deals.count == 2
    assert [deal.name for deal in snapshot.stalled_deals.top_deals] == ["Idle 30", "Idle 20"]
    assert snapshot.stalled_deals.top_deals[0].days_idle == 30
    assert snapshot.stalled_deals.top_deals[0].value == 900

    assert snapshot.cashflow.count == 2
    assert snapshot.cashflow.amount == pytest.approx(3000.5)
    assert snapshot.cashflow.top_invoices[0].invoice_number == "INV-30"
    assert snapshot.cashflow.top_invoices[0].days_overdue == 30

    assert snapshot.ops.count == 4
    assert snapshot.ops.by_assignee == (AssigneeLoad(user_id="u-1", count=2), AssigneeLoad(user_id="u-2", count=1))

    assert snapshot.shield.count == 1
    assert snapshot.shield.recent[0].type == "LOGIN_BRUTE_FORCE"

    assert snapshot.health.has_data is True
    assert snapshot.health.previous_score == 80
    assert snapshot.health.latest_score == 65
    assert snapshot.health.delta == -15


def test_collect_on_empty_tenant_returns_zeroes(db_session: Session) -> None:
    db_session.add(HealthSnapshot(tenant_id="tenant-a", score=80, computed_at=NOW))
    db_session.commit()

    snapshot = MetricCollector().collect(db_session, "tenant-a", NOW)

    assert snapshot.stalled_deals.count == 0
    assert snapshot.cashflow.count == 0
    assert snapshot.cashflow.amount == 0.0
    assert snapshot.ops.count == 0
    assert snapshot.shield.count == 0
    assert snapshot.health.has_data is False


def test_stall_window_follows_settings(db_session: Session) -> None:
    _seed_deals(db_session)
    db_session.commit()

    settings = get_settings()
    prior = settings.deal_stall_days
    settings.deal_stall_days = 25
    try:
        snapshot = MetricCollector().collect(db_session, "tenant-a", NOW)
    finally:
        settings.deal_stall_days = prior

    assert snapshot.stalled_deals.count == 1
    assert snapshot.stalled_deals.window_days == 25
    assert snapshot.stalled_deals.top_deals[0].name == "Idle 30"


def test_invoice_due_exactly_at_cutoff_is_not_overdue(db_session: Session) -> None:
    db_session.add(
        Invoice(tenant_id="tenant-a", status="SENT", amount=Decimal("10.00"), due_date=TODAY - timedelta(days=7))
    )
    db_session.commit()

    snapshot = MetricCollector().collect(db_session, "tenant-a", NOW)

    assert snapshot.cashflow.count == 0


class _BrokenReader(StateReader):
    def count_stalled_deals(self, session: Session, tenant_id: str, cutoff: datetime) -> int:
        raise OperationalError("SELECT count(*) FROM workspace_deal", {}, Exception("database is locked"))


def test_database_failure_surfaces_as_transient_error(db_session: Session) -> None:
    collector = MetricCollector(reader=_BrokenReader())

    with pytest.raises(TransientError) as exc_info:
        collector.collect(db_session, "tenant-a", NOW)

    assert exc_info.value.status_code == 503
    assert exc_info.value.details["stage"] == "collect"


def test_naive_now_is_treated_as_utc(db_session: Session) -> None:
    snapshot = MetricCollector().collect(db_session, "tenant-a", datetime(2026, 3, 1, 12, 0))

    assert snapshot.now == NOW
