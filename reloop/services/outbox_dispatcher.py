"""
Outbox processing for `notification_dispatch_mode = "outbox"`.

The dispatcher claims pending rows under a lease and hands them to the
worker. A worker only touches a row whose lease it still holds; an expired
lease puts the row back to pending for the next tick.
"""
from __future__ import annotations

import logging
import random
import uuid
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.ids import utcnow
from reloop.models.outbox import OutboxEvent
from reloop.services.notifications import handle_event

log = logging.getLogger(__name__)

MAX_ATTEMPTS = 8

Enqueue = Callable[[str, str], None]


def _backoff_seconds(attempt: int, base: int = 10, cap: int = 900) -> int:
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    return exp + random.randint(0, min(30, exp // 3))


async def requeue_expired_leases(db: AsyncSession) -> int:
    result = await db.execute(
        update(OutboxEvent)
        .where(
            OutboxEvent.status == "processing",
            OutboxEvent.lease_expires_at.is_not(None),
            OutboxEvent.lease_expires_at < utcnow(),
        )
        .values(
            status="pending",
            lease_id=None,
            lease_expires_at=None,
            processing_started_at=None,
        )
    )
    return int(result.rowcount or 0)


async def claim_outbox_event_ids(
    db: AsyncSession, batch_size: int = 100, lease_minutes: int = 10
) -> tuple[str, list[str]]:
    lease_id = uuid.uuid4().hex
    now = utcnow()

    # skip_locked lets several dispatchers run side by side on Postgres
    stmt = (
        select(OutboxEvent.id)
        .where(OutboxEvent.status == "pending")
        .order_by(OutboxEvent.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )
    ids = list((await db.execute(stmt)).scalars().all())
    if not ids:
        return lease_id, []

    await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id.in_(ids), OutboxEvent.status == "pending")
        .values(
            status="processing",
            processing_started_at=now,
            attempts=OutboxEvent.attempts + 1,
            lease_id=lease_id,
            lease_expires_at=now + timedelta(minutes=lease_minutes),
        )
    )
    await db.flush()
    return lease_id, ids


async def dispatch_outbox(
    db: AsyncSession,
    enqueue: Enqueue,
    batch_size: int = 100,
    lease_minutes: int = 10,
) -> int:
    await requeue_expired_leases(db)
    lease_id, ids = await claim_outbox_event_ids(db, batch_size=batch_size, lease_minutes=lease_minutes)

    # commit before enqueue so workers see the lease
    await db.commit()
    if not ids:
        return 0

    dispatched = 0
    failed: list[tuple[str, str]] = []
    for outbox_id in ids:
        try:
            enqueue(outbox_id, lease_id)
            dispatched += 1
        except Exception as e:
            failed.append((outbox_id, f"{type(e).__name__}: {e}"))

    if failed:
        for outbox_id, msg in failed:
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
                .values(
                    status="pending",
                    lease_id=None,
                    lease_expires_at=None,
                    processing_started_at=None,
                    last_error=f"enqueue failed: {msg}",
                )
            )
        await db.commit()
        log.warning("outbox: %d of %d events failed to enqueue", len(failed), len(ids))

    return dispatched


async def process_event(db: AsyncSession, outbox_id: str, lease_id: str) -> bool:
    """
    Run the notification dispatcher for one leased event and mark it done.
    Returns False when the lease was lost or the event is already handled.
    """
    ev = await db.get(OutboxEvent, outbox_id)
    if ev is None or ev.lease_id != lease_id or ev.status != "processing":
        return False

    try:
        await handle_event(db, ev)
    except Exception as e:
        await db.rollback()
        await _park_failed(db, outbox_id, lease_id, f"{type(e).__name__}: {e}")
        raise

    result = await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
        .values(
            status="done",
            processed_at=utcnow(),
            lease_id=None,
            lease_expires_at=None,
            last_error=None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # lease lost mid-flight
        await db.rollback()
        return False

    await db.commit()
    return True


async def _park_failed(db: AsyncSession, outbox_id: str, lease_id: str, error: str) -> None:
    """Keep the lease but push its expiry out so the row comes back after a backoff."""
    ev = await db.get(OutboxEvent, outbox_id)
    if ev is None or ev.lease_id != lease_id:
        return

    if ev.attempts >= MAX_ATTEMPTS:
        values = {"status": "failed", "lease_id": None, "lease_expires_at": None}
        log.error("outbox: giving up on %s after %d attempts", outbox_id, ev.attempts, extra={"event_type": ev.event_type})
    else:
        delay = _backoff_seconds(ev.attempts)
        values = {"lease_expires_at": utcnow() + timedelta(seconds=delay)}

    await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
        .values(last_error=error, **values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
