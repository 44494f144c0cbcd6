from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import (
    EXECUTOR_ROLES,
    MANAGER_ROLES,
    ActorContext,
    exception_response,
    get_actor_context,
    require_any_role,
    require_tenant,
    require_user,
)
from app.core.database import get_db
from app.intelligence.actions.schemas import ActionRead, ActionStatus, PagedActions, ProposalSummary
from app.intelligence.actions.service import action_service

router = APIRouter(prefix="/api/ai/actions", tags=["ai.actions"])


@router.post("/compute", response_model=ProposalSummary)
def compute_actions(
    request: Request,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> ProposalSummary | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return action_service.compute_actions(db, tenant_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_actions_compute_failed")


@router.get("", response_model=PagedActions)
def list_actions(
    request: Request,
    status_filter: ActionStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> PagedActions | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return action_service.list_actions(
            db,
            tenant_id,
            status=status_filter.value if status_filter else None,
            page=page,
            page_size=page_size,
        )
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_actions_list_failed")


@router.get("/{action_id}", response_model=ActionRead)
def get_action(
    request: Request,
    action_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> ActionRead | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return action_service.get_action(db, tenant_id, action_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_action_get_failed")


@router.post("/{action_id}/approve", response_model=ActionRead)
def approve_action(
    request: Request,
    action_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> ActionRead | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return action_service.approve_action(db, tenant_id, action_id, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_action_approve_failed")


@router.post("/{action_id}/execute", response_model=ActionRead)
def execute_action(
    request: Request,
    action_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> ActionRead | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, EXECUTOR_ROLES)
        return action_service.execute_action(db, tenant_id, action_id, ctx.user_id, ctx.primary_role)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_action_execute_failed")


@router.post("/{action_id}/undo", response_model=ActionRead)
def undo_action(
    request: Request,
    action_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> ActionRead | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return action_service.undo_action(db, tenant_id, action_id, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_action_undo_failed")
