from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from reloop.core.errors import InvalidTransition, ListingNotFound, NotOwner
from reloop.core.ids import utcnow
from reloop.models.listing import Listing, ListingView
from reloop.services import listing_state
from reloop.services.events import SYSTEM_ACTOR, emit
from reloop.services.ledger import completed_listing_ids
from reloop.services.rate_limit import FixedWindowLimiter


log = logging.getLogger(__name__)


async def create_listing(
    db: AsyncSession,
    *,
    owner_id: str,
    intent: str,
    title: str,
    description: str = "",
    attributes: dict[str, Any] | None = None,
) -> Listing:
    listing = Listing(
        owner_id=owner_id,
        intent=intent,
        status=listing_state.ACTIVE,
        title=title,
        description=description,
        attributes=attributes or {},
    )
    db.add(listing)
    await db.flush()

    await emit(
        db,
        aggregate_type="listing",
        aggregate_id=listing.id,
        event_type="listing.created",
        actor_id=owner_id,
        payload={"listing_id": listing.id, "owner_id": owner_id, "intent": intent},
    )
    return listing


async def get_listing(db: AsyncSession, listing_id: str) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise ListingNotFound()
    return listing


async def transition_listing(
    db: AsyncSession,
    *,
    listing_id: str,
    actor_id: str,
    new_status: str,
    system: bool = False,
) -> Listing:
    """
    Move a listing along the lifecycle and emit listing.status_changed.

    `system` marks transitions made on the owner's behalf (agreement
    resolution by the counterparty, the expiry sweep); those skip the owner
    check but still obey the edge table. The write is a compare-and-set on
    the status we read, so a concurrent move makes this call fail.
    """
    listing = await get_listing(db, listing_id)
    current = listing.status

    if not system and actor_id != listing.owner_id:
        raise NotOwner()
    listing_state.check_transition(current, new_status, system=system)

    now = utcnow()
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.status == current)
        .values(status=new_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition(f"Listing is no longer {current}")
    set_committed_value(listing, "status", new_status)
    set_committed_value(listing, "updated_at", now)

    await emit(
        db,
        aggregate_type="listing",
        aggregate_id=listing.id,
        event_type="listing.status_changed",
        actor_id=actor_id,
        payload={
            "listing_id": listing.id,
            "owner_id": listing.owner_id,
            "title": listing.title,
            "from": current,
            "to": new_status,
        },
    )
    return listing


async def browse_active(
    db: AsyncSession,
    *,
    intent: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Listing]:
    # a recorded transaction hides the listing whatever its status says
    stmt = select(Listing).where(
        Listing.status == listing_state.ACTIVE,
        Listing.id.not_in(completed_listing_ids()),
    )
    if intent:
        stmt = stmt.where(Listing.intent == intent)
    stmt = stmt.order_by(Listing.created_at.desc()).limit(limit).offset(offset)
    return list((await db.execute(stmt)).scalars().all())


async def list_owned(db: AsyncSession, *, owner_id: str) -> list[Listing]:
    stmt = (
        select(Listing)
        .where(Listing.owner_id == owner_id, Listing.status != listing_state.REMOVED)
        .order_by(Listing.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def expire_stale(db: AsyncSession, *, max_age_days: int) -> int:
    """Time-based trigger: move old active listings to expired."""
    cutoff = utcnow() - timedelta(days=max_age_days)
    stmt = select(Listing.id).where(
        Listing.status == listing_state.ACTIVE,
        Listing.created_at < cutoff,
    )
    ids = (await db.execute(stmt)).scalars().all()

    expired = 0
    for listing_id in ids:
        try:
            await transition_listing(
                db,
                listing_id=listing_id,
                actor_id=SYSTEM_ACTOR,
                new_status=listing_state.EXPIRED,
                system=True,
            )
        except InvalidTransition:
            # moved by a user between the scan and the write; leave it
            log.info("expire: %s changed concurrently, skipped", listing_id, extra={"listing_id": listing_id})
            continue
        expired += 1
    return expired


async def record_view(
    db: AsyncSession,
    *,
    listing_id: str,
    viewer_id: str | None,
    client_ip: str | None,
    dedupe_hours: int,
    limiter: FixedWindowLimiter | None = None,
) -> bool:
    """
    Count a listing view. Signed-in viewers count once per window; anonymous
    views are limited per IP through the window limiter.
    """
    listing = await get_listing(db, listing_id)

    if viewer_id:
        since = utcnow() - timedelta(hours=dedupe_hours)
        recent = (await db.execute(
            select(ListingView.id).where(
                ListingView.listing_id == listing_id,
                ListingView.viewer_id == viewer_id,
                ListingView.created_at >= since,
            ).limit(1)
        )).scalar_one_or_none()
        if recent:
            return False
        db.add(ListingView(listing_id=listing_id, viewer_id=viewer_id))
    else:
        if limiter is None:
            return False
        allowed = await limiter.hit(
            f"view:{listing_id}:{client_ip or 'unknown'}",
            limit=1,
            window_seconds=dedupe_hours * 3600,
        )
        if not allowed:
            return False

    await db.execute(
        update(Listing)
        .where(Listing.id == listing.id)
        .values(view_count=Listing.view_count + 1)
        .execution_options(synchronize_session=False)
    )
    return True
