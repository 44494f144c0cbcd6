from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from opentelemetry import trace
from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, get_settings
from app.core.database import SessionLocal
from app.intelligence.clock import utcnow
from app.metrics import observe_webhook_attempt, observe_webhook_endpoint_suspended
from app.platform.webhooks.models import WebhookDelivery, WebhookEndpoint
from app.platform.webhooks.signing import body_hash, serialize_payload, sign_body

logger = logging.getLogger("app.platform.webhooks")
tracer = trace.get_tracer(__name__)

EVENT_HEADER = "X-Webhook-Event"
SIGNATURE_HEADER = "X-Webhook-Signature"
ATTEMPT_HEADER = "X-Webhook-Delivery-Attempt"

_SNIPPET_LIMIT = 1024

SessionFactory = Callable[[], Session]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class EndpointTarget:
    id: uuid.UUID
    tenant_id: str
    url: str
    secret: str


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    endpoint_id: uuid.UUID
    success: bool
    attempts: int
    suspended: bool = False
    skipped: bool = False


def _truncate_snippet(value: str) -> str | None:
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:_SNIPPET_LIMIT]


def _supports_event(events: Any, event_name: str) -> bool:
    if not isinstance(events, list):
        return False
    return any(isinstance(item, str) and item == event_name for item in events)


class WebhookDispatcher:
    """Delivers one event to every matching endpoint of a tenant.

    Endpoints are attempted concurrently; attempts for a single endpoint are
    sequential with exponential backoff. Each bookkeeping step opens its own
    short session on a worker thread so no ORM state is held across an
    ``await`` and the event loop never waits on the database.
    """

    def __init__(
        self,
        session_factory: SessionFactory | sessionmaker | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._transport = transport
        self._sleep = sleep
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def dispatch(self, tenant_id: str, event_name: str, payload: Any) -> list[DeliveryOutcome]:
        try:
            targets = await asyncio.to_thread(self._load_targets, tenant_id, event_name)
        except Exception as exc:
            logger.warning(
                "webhook_endpoint_lookup_failed",
                extra={"tenant_id": tenant_id, "event_name": event_name, "error": str(exc)[:500]},
            )
            return []
        if not targets:
            return []

        body = serialize_payload(payload)
        settings = self.settings
        outcomes: list[DeliveryOutcome] = []
        async with httpx.AsyncClient(timeout=settings.webhook_timeout_seconds, transport=self._transport) as client:
            results = await asyncio.gather(
                *(self._deliver(client, target, event_name, body) for target in targets),
                return_exceptions=True,
            )
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "webhook_delivery_crashed",
                    extra={
                        "tenant_id": tenant_id,
                        "endpoint_id": str(target.id),
                        "event_name": event_name,
                        "error": str(result)[:500],
                    },
                )
                continue
            outcomes.append(result)
        return outcomes

    async def redeliver(
        self,
        tenant_id: str,
        endpoint_id: uuid.UUID,
        event_name: str,
        payload: Any,
    ) -> DeliveryOutcome | None:
        """Send one payload to a single endpoint regardless of its active flag.

        Returns None when the endpoint no longer exists for the tenant.
        """
        target = await asyncio.to_thread(self._load_target, tenant_id, endpoint_id)
        if target is None:
            return None
        body = serialize_payload(payload)
        async with httpx.AsyncClient(timeout=self.settings.webhook_timeout_seconds, transport=self._transport) as client:
            return await self._deliver(client, target, event_name, body)

    def _load_target(self, tenant_id: str, endpoint_id: uuid.UUID) -> EndpointTarget | None:
        with self._session_factory() as session:
            endpoint = session.scalar(
                select(WebhookEndpoint).where(
                    and_(WebhookEndpoint.id == endpoint_id, WebhookEndpoint.tenant_id == tenant_id)
                )
            )
            if endpoint is None:
                return None
            return EndpointTarget(id=endpoint.id, tenant_id=endpoint.tenant_id, url=endpoint.url, secret=endpoint.secret)

    def _load_targets(self, tenant_id: str, event_name: str) -> list[EndpointTarget]:
        with self._session_factory() as session:
            endpoints = session.scalars(
                select(WebhookEndpoint).where(
                    and_(WebhookEndpoint.tenant_id == tenant_id, WebhookEndpoint.is_active.is_(True))
                )
            ).all()
            return [
                EndpointTarget(id=endpoint.id, tenant_id=endpoint.tenant_id, url=endpoint.url, secret=endpoint.secret)
                for endpoint in endpoints
                if _supports_event(endpoint.events, event_name)
            ]

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        target: EndpointTarget,
        event_name: str,
        body: bytes,
    ) -> DeliveryOutcome:
        settings = self.settings
        max_attempts = max(1, settings.webhook_max_attempts)
        signature = sign_body(target.secret, body)
        digest = body_hash(body)
        error: str | None = None

        with tracer.start_as_current_span("webhooks.deliver") as span:
            span.set_attribute("endpoint_id", str(target.id))
            span.set_attribute("event_name", event_name)

            for attempt in range(1, max_attempts + 1):
                started = time.perf_counter()
                status_code: int | None = None
                snippet: str | None = None
                success = False
                error = None
                try:
                    response = await client.post(
                        target.url,
                        content=body,
                        headers={
                            "Content-Type": "application/json",
                            EVENT_HEADER: event_name,
                            SIGNATURE_HEADER: signature,
                            ATTEMPT_HEADER: str(attempt),
                        },
                    )
                    status_code = response.status_code
                    snippet = _truncate_snippet(response.text)
                    success = response.is_success
                    if not success:
                        error = f"Webhook responded with status {status_code}"
                except httpx.HTTPError as exc:
                    error = str(exc) or exc.__class__.__name__

                duration = time.perf_counter() - started
                observe_webhook_attempt("success" if success else "failure", duration)
                recorded = await asyncio.to_thread(
                    self._record_attempt,
                    target,
                    event_name,
                    attempt=attempt,
                    status_code=status_code,
                    success=success,
                    error=error,
                    duration_ms=int(duration * 1000),
                    request_body_hash=digest,
                    snippet=snippet,
                )
                if not recorded:
                    logger.info(
                        "webhook_endpoint_vanished",
                        extra={"tenant_id": target.tenant_id, "endpoint_id": str(target.id), "event_name": event_name},
                    )
                    return DeliveryOutcome(endpoint_id=target.id, success=False, attempts=attempt, skipped=True)

                if success:
                    await asyncio.to_thread(self._mark_success, target)
                    span.set_attribute("attempts", attempt)
                    return DeliveryOutcome(endpoint_id=target.id, success=True, attempts=attempt)

                if attempt < max_attempts:
                    await self._sleep(settings.webhook_backoff_base_ms * 2 ** (attempt - 1) / 1000)

            span.set_attribute("attempts", max_attempts)
            suspended = await asyncio.to_thread(self._mark_exhausted, target)
            logger.warning(
                "webhook_delivery_failed",
                extra={
                    "tenant_id": target.tenant_id,
                    "endpoint_id": str(target.id),
                    "event_name": event_name,
                    "attempt": max_attempts,
                    "error": error or "Unknown error",
                },
            )
            return DeliveryOutcome(endpoint_id=target.id, success=False, attempts=max_attempts, suspended=suspended)

    def _record_attempt(
        self,
        target: EndpointTarget,
        event_name: str,
        *,
        attempt: int,
        status_code: int | None,
        success: bool,
        error: str | None,
        duration_ms: int,
        request_body_hash: str,
        snippet: str | None,
    ) -> bool:
        with self._session_factory() as session:
            if session.get(WebhookEndpoint, target.id) is None:
                return False
            session.add(
                WebhookDelivery(
                    tenant_id=target.tenant_id,
                    endpoint_id=target.id,
                    event=event_name,
                    status_code=status_code,
                    success=success,
                    error=error,
                    attempt=attempt,
                    duration_ms=duration_ms,
                    request_body_hash=request_body_hash,
                    response_body_snippet=snippet,
                )
            )
            session.commit()
        return True

    def _mark_success(self, target: EndpointTarget) -> None:
        with self._session_factory() as session:
            session.execute(
                update(WebhookEndpoint)
                .where(WebhookEndpoint.id == target.id)
                .values(failure_count=0, last_failure_at=None)
            )
            session.commit()

    def _mark_exhausted(self, target: EndpointTarget) -> bool:
        """Count one exhausted delivery; deactivate at the threshold. Returns True when suspended here."""
        threshold = self.settings.webhook_failure_threshold
        with self._session_factory() as session:
            result = session.execute(
                update(WebhookEndpoint)
                .where(WebhookEndpoint.id == target.id)
                .values(failure_count=WebhookEndpoint.failure_count + 1, last_failure_at=utcnow())
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            failure_count = session.scalar(select(WebhookEndpoint.failure_count).where(WebhookEndpoint.id == target.id)) or 0
            suspended = False
            if failure_count >= threshold:
                deactivated = session.execute(
                    update(WebhookEndpoint)
                    .where(and_(WebhookEndpoint.id == target.id, WebhookEndpoint.is_active.is_(True)))
                    .values(is_active=False)
                )
                suspended = deactivated.rowcount == 1
            session.commit()

        if suspended:
            observe_webhook_endpoint_suspended()
            logger.warning(
                "webhook_endpoint_suspended",
                extra={"tenant_id": target.tenant_id, "endpoint_id": str(target.id), "attempt": failure_count},
            )
        return suspended
