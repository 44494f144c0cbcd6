from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

WEBHOOK_EVENTS: tuple[str, ...] = (
    "ai.insight.created",
    "ai.action.executed",
    "ai.action.failed",
    "ai.action.undone",
)


class WebhookEndpointCreate(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    events: list[str] = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return trimmed


class WebhookEndpointRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    url: str
    events: list[str]
    is_active: bool
    failure_count: int
    last_failure_at: datetime | None
    created_at: datetime


class WebhookEndpointCreated(WebhookEndpointRead):
    # Returned once at creation; later reads never expose it.
    secret: str


class WebhookDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    endpoint_id: UUID
    event: str
    status_code: int | None
    success: bool
    error: str | None
    attempt: int
    duration_ms: int
    request_body_hash: str
    response_body_snippet: str | None
    created_at: datetime


class DeleteEndpointResponse(BaseModel):
    success: bool = True


class RetryDeliveryRequest(BaseModel):
    delivery_id: UUID


class RetryDeliveryResponse(BaseModel):
    success: bool = True
    delivered: bool
    attempts: int
