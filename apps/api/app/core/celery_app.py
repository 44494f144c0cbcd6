from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Celery

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.intelligence.actions.service import action_service
from app.intelligence.insights.service import insight_service
from app.platform.webhooks.service import get_dispatcher

settings = get_settings()
logger = logging.getLogger("app.tasks")

celery_app = Celery("pulseops_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.task_serializer = "json"
celery_app.conf.accept_content = ["json"]


@celery_app.task(name="app.tasks.insights.run_cycle")
def run_insight_cycle_task(tenant_id: str) -> dict[str, Any]:
    with SessionLocal() as session:
        result = insight_service.run_insight_cycle(session, tenant_id)
    return result.model_dump(mode="json")


@celery_app.task(name="app.tasks.actions.run_proposal_cycle")
def run_proposal_cycle_task(tenant_id: str) -> dict[str, Any]:
    with SessionLocal() as session:
        summary = action_service.compute_actions(session, tenant_id)
    return summary.model_dump(mode="json")


@celery_app.task(name="app.tasks.webhooks.dispatch")
def dispatch_webhook_task(tenant_id: str, event_name: str, payload: dict[str, Any]) -> int:
    outcomes = asyncio.run(get_dispatcher().dispatch(tenant_id, event_name, payload))
    delivered = sum(1 for outcome in outcomes if outcome.success)
    logger.info("webhook_task_completed", extra={"tenant_id": tenant_id, "event_name": event_name})
    return delivered
