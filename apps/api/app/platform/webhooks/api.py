from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import (
    MANAGER_ROLES,
    ActorContext,
    exception_response,
    get_actor_context,
    require_any_role,
    require_tenant,
    require_user,
)
from app.core.database import get_db
from app.platform.webhooks.schemas import (
    DeleteEndpointResponse,
    RetryDeliveryRequest,
    RetryDeliveryResponse,
    WebhookDeliveryRead,
    WebhookEndpointCreate,
    WebhookEndpointCreated,
    WebhookEndpointRead,
)
from app.platform.webhooks.service import webhook_service

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _authorize(ctx: ActorContext) -> str:
    tenant_id = require_tenant(ctx)
    require_user(ctx)
    require_any_role(ctx, MANAGER_ROLES)
    return tenant_id


@router.post("/endpoints", response_model=WebhookEndpointCreated, status_code=status.HTTP_201_CREATED)
def create_endpoint(
    request: Request,
    dto: WebhookEndpointCreate,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> WebhookEndpointCreated | JSONResponse:
    try:
        tenant_id = _authorize(ctx)
        return webhook_service.create_endpoint(db, tenant_id, dto, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="webhook_endpoint_create_failed")


@router.get("/endpoints", response_model=list[WebhookEndpointRead])
def list_endpoints(
    request: Request,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> list[WebhookEndpointRead] | JSONResponse:
    try:
        tenant_id = _authorize(ctx)
        return webhook_service.list_endpoints(db, tenant_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="webhook_endpoint_list_failed")


@router.post("/endpoints/{endpoint_id}/enable", response_model=WebhookEndpointRead)
def enable_endpoint(
    request: Request,
    endpoint_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> WebhookEndpointRead | JSONResponse:
    try:
        tenant_id = _authorize(ctx)
        return webhook_service.enable_endpoint(db, tenant_id, endpoint_id, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="webhook_endpoint_enable_failed")


@router.delete("/endpoints/{endpoint_id}", response_model=DeleteEndpointResponse)
def delete_endpoint(
    request: Request,
    endpoint_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> DeleteEndpointResponse | JSONResponse:
    try:
        tenant_id = _authorize(ctx)
        return webhook_service.delete_endpoint(db, tenant_id, endpoint_id, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="webhook_endpoint_delete_failed")


@router.get("/endpoints/{endpoint_id}/deliveries", response_model=list[WebhookDeliveryRead])
def list_deliveries(
    request: Request,
    endpoint_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> list[WebhookDeliveryRead] | JSONResponse:
    try:
        tenant_id = _authorize(ctx)
        return webhook_service.list_deliveries(db, tenant_id, endpoint_id, limit=limit)
    except HTTPException as exc:
        return exception_response(request, exc, code="webhook_delivery_list_failed")


@router.post("/endpoints/{endpoint_id}/retry", response_model=RetryDeliveryResponse)
def retry_delivery(
    request: Request,
    endpoint_id: uuid.UUID,
    dto: RetryDeliveryRequest,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> RetryDeliveryResponse | JSONResponse:
    try:
        tenant_id = _authorize(ctx)
        return webhook_service.retry_delivery(db, tenant_id, endpoint_id, dto.delivery_id, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="webhook_delivery_retry_failed")
