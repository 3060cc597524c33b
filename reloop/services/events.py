from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.config import settings
from reloop.core.ids import utcnow
from reloop.models.outbox import OutboxEvent
from reloop.services.notifications import handle_event


log = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


async def emit(
    db: AsyncSession,
    *,
    aggregate_type: str,
    aggregate_id: str,
    event_type: str,
    actor_id: str,
    payload: dict[str, Any],
) -> OutboxEvent:
    """
    Record a domain event in the outbox, inside the caller's transaction.

    In "inline" dispatch mode the notification dispatcher runs right away in
    the same transaction; in "outbox" mode the row stays pending for the
    worker to claim.
    """
    ev = OutboxEvent(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        actor_id=actor_id,
        payload=payload,
        status="pending",
    )
    db.add(ev)
    await db.flush()

    log.info("event %s on %s", event_type, aggregate_id, extra={"event_type": event_type})

    if settings.notification_dispatch_mode == "inline":
        await handle_event(db, ev)
        ev.status = "done"
        ev.attempts = 1
        ev.processed_at = utcnow()
        await db.flush()

    return ev
