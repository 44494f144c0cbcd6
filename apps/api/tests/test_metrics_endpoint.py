from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.workspace.models import Deal, WorkspaceUser
from app.core.auth import AuthUser, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.platform.webhooks.service import unregister_webhook_forwarding

TENANT_HEADERS = {"x-tenant-id": "tenant-metrics"}


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("FEATURE_GATE_DISABLED", "true")
    monkeypatch.setenv("WEBHOOK_DISPATCH_MODE", "disabled")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def roles() -> list[str]:
    return ["CEO", "system.metrics.read"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=list(roles))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    unregister_webhook_forwarding()


def test_metrics_endpoint_exposes_http_insight_and_action_metrics(client: TestClient, db_session: Session) -> None:
    db_session.add(
        Deal(tenant_id="tenant-metrics", title="Idle", updated_at=datetime.now(timezone.utc) - timedelta(days=30))
    )
    db_session.add(WorkspaceUser(tenant_id="tenant-metrics", email="sales@example.com", role="SALES"))
    db_session.commit()

    health = client.get("/health")
    assert health.status_code == 200

    computed = client.post("/api/ai/insights/compute", headers=TENANT_HEADERS)
    assert computed.status_code == 200

    proposed = client.post("/api/ai/actions/compute", headers=TENANT_HEADERS)
    assert proposed.status_code == 200

    [action] = client.get("/api/ai/actions", headers=TENANT_HEADERS).json()["items"]
    approved = client.post(f"/api/ai/actions/{action['id']}/approve", headers=TENANT_HEADERS)
    assert approved.status_code == 200
    executed = client.post(f"/api/ai/actions/{action['id']}/execute", headers=TENANT_HEADERS)
    assert executed.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "insight_cycles_total" in body
    assert "insight_cycle_duration_seconds" in body
    assert "action_transitions_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/ai/actions/{id}/execute"' in body
    assert 'kind="DEAL_STALL"' in body
    assert 'kind="CREATE_NUDGE",status="EXECUTED"' in body


def test_metrics_require_permission(client: TestClient, roles: list[str]) -> None:
    roles.remove("system.metrics.read")

    response = client.get("/metrics")

    assert response.status_code == 403


def test_metrics_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
