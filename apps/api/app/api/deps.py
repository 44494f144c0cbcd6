from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings

ROLE_ADMIN = "ADMIN"
ROLE_CEO = "CEO"
ROLE_OPS = "OPS"

MANAGER_ROLES = (ROLE_CEO, ROLE_ADMIN)
EXECUTOR_ROLES = (ROLE_CEO, ROLE_ADMIN, ROLE_OPS)

SYSTEM_ACTOR = "system:jobs"


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


@dataclass
class ActorContext:
    user_id: str
    tenant_id: str | None
    roles: set[str] = field(default_factory=set)
    correlation_id: str | None = None
    via_jobs_secret: bool = False

    @property
    def primary_role(self) -> str | None:
        for role in EXECUTOR_ROLES:
            if role in self.roles:
                return role
        return None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def exception_response(request: Request, exc: HTTPException, *, code: str) -> JSONResponse:
    """Render a raised ``HTTPException`` in the error envelope.

    Domain errors carry their own code and structured details; plain
    ``HTTPException`` falls back to the route's code.
    """
    error_code = getattr(exc, "code", None) or code
    details = getattr(exc, "details", None)
    if details is None and not isinstance(exc.detail, str):
        details = exc.detail
    return error_response(
        request,
        status_code=exc.status_code,
        code=error_code,
        message=str(exc.detail),
        details=details,
    )


def _jobs_secret_matches(provided: str | None) -> bool:
    expected = get_settings().jobs_secret
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def get_actor_context(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    tenant_id_header: str | None = Header(default=None, alias="x-tenant-id"),
    jobs_secret_header: str | None = Header(default=None, alias="x-jobs-secret"),
) -> ActorContext:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    tenant_id = tenant_id_header.strip() if tenant_id_header and tenant_id_header.strip() else None
    if _jobs_secret_matches(jobs_secret_header):
        return ActorContext(
            user_id=SYSTEM_ACTOR,
            tenant_id=tenant_id,
            roles={ROLE_ADMIN},
            correlation_id=correlation_id,
            via_jobs_secret=True,
        )
    return ActorContext(
        user_id=auth_user.sub,
        tenant_id=tenant_id,
        roles={str(role).upper() for role in auth_user.roles},
        correlation_id=correlation_id,
    )


def require_tenant(ctx: ActorContext) -> str:
    if ctx.tenant_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="x-tenant-id header is required")
    return ctx.tenant_id


def require_any_role(ctx: ActorContext, roles: tuple[str, ...]) -> None:
    if not any(role in ctx.roles for role in roles):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing role: {' or '.join(roles)}")


def require_user(ctx: ActorContext) -> None:
    if ctx.via_jobs_secret:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Jobs secret is only accepted for compute runs")
