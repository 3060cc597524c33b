from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from reloop.models.audit_log import AuditLog

audit_log = logging.getLogger("reloop.audit")


async def audit(
    db: AsyncSession,
    *,
    actor_id: str | None,
    action: str,
    target_type: str | None = None,
    target_id: str | None = None,
    detail: dict | None = None,
) -> AuditLog:
    """Record a state-changing action. The row commits or rolls back with the action itself."""
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=detail or {},
    )
    db.add(entry)
    audit_log.info("%s %s/%s", action, target_type, target_id, extra={"user_id": actor_id})
    return entry
