from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    tenant_id: str | None = None


def issue_token(sub: str, roles: list[str], tenant_id: str | None = None) -> str:
    settings = get_settings()
    claims: dict[str, object] = {"sub": sub, "roles": roles}
    if tenant_id is not None:
        claims["tenant_id"] = tenant_id
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    tenant_id = payload.get("tenant_id")
    request.state.user_id = subject
    return AuthUser(
        sub=subject,
        roles=[str(role) for role in roles],
        tenant_id=str(tenant_id) if tenant_id else None,
    )
