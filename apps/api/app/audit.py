from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.config import get_settings
from app.models.audit import AuditLog

logger = logging.getLogger("app.audit")

audit_entries: list[dict[str, Any]] = []


def record(
    tenant_id: str,
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    *,
    session: Session | None = None,
    correlation_id: str | None = None,
) -> None:
    """Append one audit entry; failures are logged and never reach the caller.

    With ``audit_backend == "db"`` the row is added to ``session`` and lands
    with the caller's next commit.
    """
    resolved_correlation_id = correlation_id or get_correlation_id()
    try:
        if get_settings().audit_backend == "db" and session is not None:
            session.add(
                AuditLog(
                    tenant_id=tenant_id,
                    actor_id=actor_user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    before=before,
                    after=after,
                    correlation_id=resolved_correlation_id,
                )
            )
            return

        audit_entries.append(
            {
                "id": str(uuid.uuid4()),
                "tenant_id": tenant_id,
                "actor_user_id": actor_user_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "before": before,
                "after": after,
                "correlation_id": resolved_correlation_id,
                "occurred_at": datetime.now(timezone.utc).isoformat(),
            }
        )
    except Exception as exc:
        logger.warning("audit_record_failed", extra={"tenant_id": tenant_id, "error": str(exc)})
