from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
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
from app.intelligence.insights.schemas import InsightCycleResult, InsightRead, ResolveInsightResponse
from app.intelligence.insights.service import insight_service

router = APIRouter(prefix="/api/ai/insights", tags=["ai.insights"])


@router.post("/compute", response_model=InsightCycleResult)
def compute_insights(
    request: Request,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> InsightCycleResult | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return insight_service.run_insight_cycle(db, tenant_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_insights_compute_failed")


@router.get("", response_model=list[InsightRead])
def list_insights(
    request: Request,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> list[InsightRead] | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return insight_service.list_open_insights(db, tenant_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_insights_list_failed")


@router.post("/{insight_id}/resolve", response_model=ResolveInsightResponse)
def resolve_insight(
    request: Request,
    insight_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(get_actor_context),
) -> ResolveInsightResponse | JSONResponse:
    try:
        tenant_id = require_tenant(ctx)
        require_user(ctx)
        require_any_role(ctx, MANAGER_ROLES)
        return insight_service.resolve_insight(db, tenant_id, insight_id, ctx.user_id)
    except HTTPException as exc:
        return exception_response(request, exc, code="ai_insight_resolve_failed")
