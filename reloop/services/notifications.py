from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.errors import NotificationNotFound, NotRecipient
from reloop.core.ids import utcnow
from reloop.models.notification import Notification
from reloop.models.outbox import OutboxEvent
from reloop.services import realtime


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    recipient_id: str
    title: str
    message: str = ""
    link: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


Builder = Callable[[OutboxEvent], list[Notice]]

_OUTCOME_TITLES = {
    "accept": "Your agreement was accepted",
    "confirm": "The exchange was confirmed",
    "decline": "Your agreement was declined",
    "withdraw": "An agreement was withdrawn",
}


def _conversation_link(p: dict[str, Any]) -> str | None:
    cid = p.get("conversation_id")
    return f"/messages/{cid}" if cid else None


def _listing_status_changed(ev: OutboxEvent) -> list[Notice]:
    p = ev.payload
    # other listing moves are driven by agreements and notified there
    if p.get("to") != "expired":
        return []
    return [Notice(
        recipient_id=p["owner_id"],
        title="Your listing expired",
        message=p.get("title") or "",
        link=f"/listing/{p['listing_id']}",
        payload={"listing_id": p["listing_id"]},
    )]


def _agreement_proposed(ev: OutboxEvent) -> list[Notice]:
    p = ev.payload
    return [Notice(
        recipient_id=p["counterparty_id"],
        title="New exchange agreement",
        message=p.get("listing_title") or "",
        link=_conversation_link(p),
        payload={"agreement_id": p["agreement_id"], "listing_id": p["listing_id"]},
    )]


def _agreement_resolved(ev: OutboxEvent) -> list[Notice]:
    p = ev.payload
    other = p["counterparty_id"] if ev.actor_id == p["proposer_id"] else p["proposer_id"]
    return [Notice(
        recipient_id=other,
        title=_OUTCOME_TITLES.get(p["outcome"], "Agreement updated"),
        message=p.get("listing_title") or "",
        link=_conversation_link(p),
        payload={"agreement_id": p["agreement_id"], "listing_id": p["listing_id"], "outcome": p["outcome"]},
    )]


def _message_sent(ev: OutboxEvent) -> list[Notice]:
    p = ev.payload
    return [Notice(
        recipient_id=p["receiver_id"],
        title="New message",
        message=p.get("preview") or "",
        link=_conversation_link(p),
        payload={"conversation_id": p["conversation_id"], "message_id": p["message_id"]},
    )]


BUILDERS: dict[str, Builder] = {
    "listing.status_changed": _listing_status_changed,
    "agreement.proposed": _agreement_proposed,
    "agreement.resolved": _agreement_resolved,
    "message.sent": _message_sent,
}


def serialize(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "link": n.link,
        "payload": n.payload,
        "read": n.read,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


async def handle_event(db: AsyncSession, ev: OutboxEvent) -> list[Notification]:
    """
    Turn one outbox event into notifications for everyone but its actor.

    Safe to call again for the same event: (event_id, recipient_id) is unique
    and already-created notices are skipped.
    """
    build: Builder | None = BUILDERS.get(ev.event_type)
    if build is None:
        return []

    created: list[Notification] = []
    for notice in build(ev):
        if notice.recipient_id == ev.actor_id:
            continue

        exists = (await db.execute(
            select(Notification.id).where(
                Notification.event_id == ev.id,
                Notification.recipient_id == notice.recipient_id,
            )
        )).scalar_one_or_none()
        if exists:
            continue

        n = Notification(
            recipient_id=notice.recipient_id,
            event_id=ev.id,
            type=ev.event_type,
            title=notice.title,
            message=notice.message,
            link=notice.link,
            payload=notice.payload,
        )
        db.add(n)
        created.append(n)

    if created:
        await db.flush()
        for n in created:
            realtime.stage(db, n.recipient_id, {"type": "notification", "notification": serialize(n)})
        log.info("dispatched %d notifications for %s", len(created), ev.event_type, extra={"event_type": ev.event_type})

    return created


async def list_notifications(
    db: AsyncSession,
    *,
    user_id: str,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    stmt = select(Notification).where(Notification.recipient_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def unread_count(db: AsyncSession, *, user_id: str) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.recipient_id == user_id,
        Notification.read.is_(False),
    )
    return int((await db.execute(stmt)).scalar_one())


async def mark_read(db: AsyncSession, *, user_id: str, notification_id: str) -> Notification:
    n = await db.get(Notification, notification_id)
    if n is None:
        raise NotificationNotFound()
    if n.recipient_id != user_id:
        raise NotRecipient()
    if not n.read:
        n.read = True
        n.read_at = utcnow()
        await db.flush()
    return n


async def mark_all_read(db: AsyncSession, *, user_id: str) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
