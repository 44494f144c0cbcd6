from __future__ import annotations

import asyncio
import contextvars
import logging
import secrets
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from app import audit
from app.core.config import get_settings
from app.core.events import InProcessEventBus, InternalEvent, event_bus
from app.intelligence.clock import utcnow
from app.intelligence.errors import NotFoundError, ValidationError
from app.platform.webhooks.dispatcher import WebhookDispatcher
from app.platform.webhooks.models import WebhookDelivery, WebhookEndpoint
from app.platform.webhooks.schemas import (
    WEBHOOK_EVENTS,
    DeleteEndpointResponse,
    RetryDeliveryResponse,
    WebhookDeliveryRead,
    WebhookEndpointCreate,
    WebhookEndpointCreated,
    WebhookEndpointRead,
)

logger = logging.getLogger("app.platform.webhooks")

DISPATCH_TASK_NAME = "app.tasks.webhooks.dispatch"
_ENTITY_TYPE = "webhook_endpoint"

_dispatcher = WebhookDispatcher()
_inline_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="webhook-dispatch")
_pending: set[Future[None]] = set()
_pending_lock = threading.Lock()


def set_dispatcher(dispatcher: WebhookDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> WebhookDispatcher:
    return _dispatcher


def _normalize_events(events: list[str]) -> list[str]:
    normalized: list[str] = []
    for event in events:
        name = event.strip()
        if name and name not in normalized:
            normalized.append(name)
    unknown = [name for name in normalized if name not in WEBHOOK_EVENTS]
    if unknown or not normalized:
        raise ValidationError(
            "Unsupported webhook events",
            details={"unknown": unknown, "supported": list(WEBHOOK_EVENTS)},
        )
    return normalized


@dataclass(slots=True)
class WebhookService:
    def create_endpoint(
        self,
        session: Session,
        tenant_id: str,
        dto: WebhookEndpointCreate,
        actor_user_id: str,
    ) -> WebhookEndpointCreated:
        endpoint = WebhookEndpoint(
            tenant_id=tenant_id,
            url=dto.url,
            secret=secrets.token_hex(32),
            events=_normalize_events(dto.events),
            is_active=True,
            failure_count=0,
        )
        session.add(endpoint)
        session.flush()
        audit.record(
            tenant_id,
            actor_user_id,
            _ENTITY_TYPE,
            str(endpoint.id),
            "WEBHOOK_ENDPOINT_CREATED",
            after={"url": endpoint.url, "events": endpoint.events},
            session=session,
        )
        session.commit()
        session.refresh(endpoint)
        logger.info("webhook_endpoint_created", extra={"tenant_id": tenant_id, "endpoint_id": str(endpoint.id)})
        return WebhookEndpointCreated.model_validate(endpoint)

    def list_endpoints(self, session: Session, tenant_id: str) -> list[WebhookEndpointRead]:
        rows = session.scalars(
            select(WebhookEndpoint)
            .where(WebhookEndpoint.tenant_id == tenant_id)
            .order_by(WebhookEndpoint.created_at.desc(), WebhookEndpoint.id.asc())
        ).all()
        return [WebhookEndpointRead.model_validate(row) for row in rows]

    def enable_endpoint(
        self,
        session: Session,
        tenant_id: str,
        endpoint_id: uuid.UUID,
        actor_user_id: str,
    ) -> WebhookEndpointRead:
        endpoint = self._get_or_404(session, tenant_id, endpoint_id)
        before = {"is_active": endpoint.is_active, "failure_count": endpoint.failure_count}
        endpoint.is_active = True
        endpoint.failure_count = 0
        endpoint.last_failure_at = None
        audit.record(
            tenant_id,
            actor_user_id,
            _ENTITY_TYPE,
            str(endpoint.id),
            "WEBHOOK_ENDPOINT_ENABLED",
            before=before,
            after={"is_active": True, "failure_count": 0},
            session=session,
        )
        session.commit()
        session.refresh(endpoint)
        logger.info("webhook_endpoint_enabled", extra={"tenant_id": tenant_id, "endpoint_id": str(endpoint.id)})
        return WebhookEndpointRead.model_validate(endpoint)

    def delete_endpoint(
        self,
        session: Session,
        tenant_id: str,
        endpoint_id: uuid.UUID,
        actor_user_id: str,
    ) -> DeleteEndpointResponse:
        endpoint = self._get_or_404(session, tenant_id, endpoint_id)
        session.execute(delete(WebhookDelivery).where(WebhookDelivery.endpoint_id == endpoint.id))
        session.delete(endpoint)
        audit.record(
            tenant_id,
            actor_user_id,
            _ENTITY_TYPE,
            str(endpoint_id),
            "WEBHOOK_ENDPOINT_DELETED",
            before={"url": endpoint.url},
            session=session,
        )
        session.commit()
        return DeleteEndpointResponse(success=True)

    def list_deliveries(
        self,
        session: Session,
        tenant_id: str,
        endpoint_id: uuid.UUID,
        limit: int = 50,
    ) -> list[WebhookDeliveryRead]:
        endpoint = self._get_or_404(session, tenant_id, endpoint_id)
        rows = session.scalars(
            select(WebhookDelivery)
            .where(and_(WebhookDelivery.tenant_id == tenant_id, WebhookDelivery.endpoint_id == endpoint.id))
            .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.attempt.desc())
            .limit(limit)
        ).all()
        return [WebhookDeliveryRead.model_validate(row) for row in rows]

    def retry_delivery(
        self,
        session: Session,
        tenant_id: str,
        endpoint_id: uuid.UUID,
        delivery_id: uuid.UUID,
        actor_user_id: str,
    ) -> RetryDeliveryResponse:
        """Replay a recorded delivery to its endpoint.

        The original body is not stored, so receivers get a replay notice
        carrying the delivery id, event and the hash of the original body.
        Suspended endpoints are still attempted; this does not re-enable them.
        """
        endpoint = self._get_or_404(session, tenant_id, endpoint_id)
        delivery = session.scalar(
            select(WebhookDelivery).where(
                and_(
                    WebhookDelivery.id == delivery_id,
                    WebhookDelivery.endpoint_id == endpoint.id,
                    WebhookDelivery.tenant_id == tenant_id,
                )
            )
        )
        if delivery is None:
            raise NotFoundError("Webhook delivery not found")

        event_name = delivery.event
        replay = {
            "retry_of_delivery_id": str(delivery.id),
            "event": event_name,
            "request_body_hash": delivery.request_body_hash,
            "replayed_at": utcnow().isoformat(),
        }
        audit.record(
            tenant_id,
            actor_user_id,
            _ENTITY_TYPE,
            str(endpoint.id),
            "WEBHOOK_DELIVERY_RETRIED",
            after={"delivery_id": str(delivery.id), "event": event_name},
            session=session,
        )
        session.commit()

        outcome = asyncio.run(get_dispatcher().redeliver(tenant_id, endpoint_id, event_name, replay))
        if outcome is None:
            raise NotFoundError("Webhook endpoint not found")
        logger.info(
            "webhook_delivery_retried",
            extra={
                "tenant_id": tenant_id,
                "endpoint_id": str(endpoint_id),
                "delivery_id": str(delivery_id),
                "event_name": event_name,
                "status": "delivered" if outcome.success else "failed",
                "attempt": outcome.attempts,
            },
        )
        return RetryDeliveryResponse(delivered=outcome.success, attempts=outcome.attempts)

    @staticmethod
    def _get_or_404(session: Session, tenant_id: str, endpoint_id: uuid.UUID) -> WebhookEndpoint:
        endpoint = session.scalar(
            select(WebhookEndpoint).where(and_(WebhookEndpoint.id == endpoint_id, WebhookEndpoint.tenant_id == tenant_id))
        )
        if endpoint is None:
            raise NotFoundError("Webhook endpoint not found")
        return endpoint


def _run_inline(dispatcher: WebhookDispatcher, tenant_id: str, event_name: str, payload: dict[str, Any]) -> None:
    try:
        asyncio.run(dispatcher.dispatch(tenant_id, event_name, payload))
    except Exception as exc:
        logger.warning(
            "webhook_inline_dispatch_failed",
            extra={"tenant_id": tenant_id, "event_name": event_name, "error": str(exc)[:500]},
        )


def _forget(future: Future[None]) -> None:
    with _pending_lock:
        _pending.discard(future)


def drain_inline_dispatches(timeout: float | None = None) -> None:
    """Wait for in-process deliveries handed off by ``dispatch_event``."""
    with _pending_lock:
        pending = list(_pending)
    if pending:
        wait(pending, timeout=timeout)


def dispatch_event(tenant_id: str, event_name: str, payload: dict[str, Any]) -> Future[None] | None:
    """Fire-and-forget delivery from synchronous code; never raises.

    Inline mode hands the delivery to a worker thread and returns at once, so
    the caller never waits on endpoint round-trips or backoff.
    """
    mode = get_settings().webhook_dispatch_mode.lower()
    if mode == "disabled":
        return None

    if mode == "celery":
        from app.core.celery_app import celery_app

        try:
            celery_app.send_task(DISPATCH_TASK_NAME, args=[tenant_id, event_name, payload])
        except Exception as exc:
            logger.warning(
                "webhook_enqueue_failed",
                extra={"tenant_id": tenant_id, "event_name": event_name, "error": str(exc)[:500]},
            )
        return None

    context = contextvars.copy_context()
    try:
        future = _inline_executor.submit(context.run, _run_inline, get_dispatcher(), tenant_id, event_name, payload)
    except RuntimeError as exc:
        # Raised once the executor has shut down at interpreter exit.
        logger.warning(
            "webhook_inline_dispatch_failed",
            extra={"tenant_id": tenant_id, "event_name": event_name, "error": str(exc)[:500]},
        )
        return None
    with _pending_lock:
        _pending.add(future)
    future.add_done_callback(_forget)
    return future


def forward_event(event: InternalEvent) -> None:
    envelope = event.payload
    if not isinstance(envelope, dict) or event.name not in WEBHOOK_EVENTS:
        return
    tenant_id = envelope.get("tenant_id")
    if not isinstance(tenant_id, str) or not tenant_id:
        return
    dispatch_event(tenant_id, event.name, envelope)


def register_webhook_forwarding(bus: InProcessEventBus = event_bus) -> None:
    for event_name in WEBHOOK_EVENTS:
        bus.subscribe(event_name, forward_event)


def unregister_webhook_forwarding(bus: InProcessEventBus = event_bus) -> None:
    for event_name in WEBHOOK_EVENTS:
        bus.unsubscribe(event_name, forward_event)


webhook_service = WebhookService()
