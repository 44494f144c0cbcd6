from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.business.workspace.gateways import FEATURE_REVENUE_INTELLIGENCE
from app.business.workspace.models import Deal, TenantFeature
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.logging import JsonLogFormatter
from app.main import app
from app.platform.webhooks.service import unregister_webhook_forwarding


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("WEBHOOK_DISPATCH_MODE", "disabled")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["CEO"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    unregister_webhook_forwarding()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    path = f"/api/ai/actions/{uuid.uuid4()}/approve"
    response = client.post(path, headers={"X-Correlation-Id": "abc-123", "x-tenant-id": "tenant-a"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "POST"
        and getattr(record, "path", None) == "/api/ai/actions/{id}/approve"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_insight_cycle_context_and_correlation_id(
    client: TestClient,
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    db_session.add(TenantFeature(tenant_id="tenant-a", feature_key=FEATURE_REVENUE_INTELLIGENCE, enabled=True))
    db_session.add(
        Deal(tenant_id="tenant-a", title="Quiet deal", updated_at=datetime.now(timezone.utc) - timedelta(days=40))
    )
    db_session.commit()

    response = client.post(
        "/api/ai/insights/compute",
        headers={"X-Correlation-Id": "abc-123", "x-tenant-id": "tenant-a"},
    )
    assert response.status_code == 200

    cycle_records = [record for record in caplog.records if record.name == "app.intelligence.insights"]
    assert cycle_records
    assert any(
        record.getMessage() == "insight_cycle_completed"
        and getattr(record, "tenant_id", None) == "tenant-a"
        and getattr(record, "created_count", None) == 1
        and getattr(record, "correlation_id", None) == "abc-123"
        for record in cycle_records
    )


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.LogRecord("app.platform.webhooks", logging.WARNING, __file__, 1, "webhook_delivery_failed", None, None)
    record.correlation_id = "corr-json-1"
    record.endpoint_id = "endpoint-1"
    record.attempt = 2
    record.error = "x" * 900
    record.secret = "must-not-leak"

    formatted = JsonLogFormatter().format(record)

    assert '"correlation_id": "corr-json-1"' in formatted
    assert '"endpoint_id": "endpoint-1"' in formatted
    assert '"attempt": 2' in formatted
    assert "x" * 500 in formatted and "x" * 501 not in formatted
    assert "must-not-leak" not in formatted
