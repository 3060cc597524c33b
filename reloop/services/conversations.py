"""
Conversation and messaging engine.

One conversation per unordered user pair per optional listing. The pair is
stored ordered (user_low < user_high) and creation is an
INSERT ... ON CONFLICT DO NOTHING against the partial unique indexes, so two
racing callers always end up reading the same row.

Hiding is per viewer (conversation_participants.hidden) and any new inbound
message clears it for the receiver.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.config import settings
from reloop.core.errors import (
    BodyTooLong,
    ConversationNotFound,
    EmptyBody,
    NotParticipant,
    ReloopError,
    SelfDealing,
)
from reloop.core.ids import gen_id, utcnow
from reloop.models.conversation import Conversation, ConversationParticipant
from reloop.models.listing import Listing
from reloop.models.message import Message
from reloop.services import realtime
from reloop.services.events import emit
from reloop.services.listings import get_listing


log = logging.getLogger(__name__)

BOXES = ("all", "received", "sent")
PREVIEW_CHARS = 140


@dataclass(frozen=True)
class Thread:
    conversation: Conversation
    listing: Listing | None
    messages: list[Message]


@dataclass(frozen=True)
class InboxItem:
    conversation: Conversation
    other_user_id: str
    listing: Listing | None
    last_message: Message | None
    first_sender_id: str | None
    unread_count: int


def ordered_pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


def _insert(db: AsyncSession):
    # ON CONFLICT is dialect specific
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def serialize_message(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "sender_id": m.sender_id,
        "body": m.body,
        "read": m.read,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


async def _find_conversation(
    db: AsyncSession, low: str, high: str, listing_id: str | None
) -> Conversation | None:
    stmt = select(Conversation).where(Conversation.user_low == low, Conversation.user_high == high)
    if listing_id is None:
        stmt = stmt.where(Conversation.listing_id.is_(None))
    else:
        stmt = stmt.where(Conversation.listing_id == listing_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_or_create_conversation(
    db: AsyncSession,
    *,
    user_a: str,
    user_b: str,
    listing_id: str | None = None,
) -> Conversation:
    if user_a == user_b:
        raise SelfDealing("Cannot message yourself")
    if listing_id is not None:
        await get_listing(db, listing_id)

    low, high = ordered_pair(user_a, user_b)
    existing = await _find_conversation(db, low, high, listing_id)
    if existing is not None:
        return existing

    insert = _insert(db)
    now = utcnow()
    stmt = insert(Conversation).values(
        id=gen_id("cnv"),
        user_low=low,
        user_high=high,
        listing_id=listing_id,
        created_at=now,
        last_activity_at=now,
    )
    if listing_id is None:
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["user_low", "user_high"],
            index_where=text("listing_id IS NULL"),
        )
    else:
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["user_low", "user_high", "listing_id"],
            index_where=text("listing_id IS NOT NULL"),
        )
    await db.execute(stmt)

    conv = await _find_conversation(db, low, high, listing_id)
    assert conv is not None

    await db.execute(
        insert(ConversationParticipant)
        .values([
            {"conversation_id": conv.id, "user_id": low, "hidden": False},
            {"conversation_id": conv.id, "user_id": high, "hidden": False},
        ])
        .on_conflict_do_nothing(index_elements=["conversation_id", "user_id"])
    )
    return conv


async def _load_for_participant(db: AsyncSession, conversation_id: str, user_id: str) -> Conversation:
    conv = await db.get(Conversation, conversation_id)
    if conv is None:
        raise ConversationNotFound()
    if not conv.has_participant(user_id):
        raise NotParticipant()
    return conv


async def send_message(
    db: AsyncSession,
    *,
    sender_id: str,
    conversation_id: str,
    body: str | None,
) -> Message:
    conv = await _load_for_participant(db, conversation_id, sender_id)

    content = (body or "").strip()
    if not content:
        raise EmptyBody()
    if len(content) > settings.message_max_length:
        raise BodyTooLong(f"Message is too long. Maximum {settings.message_max_length} characters allowed.")

    receiver_id = conv.other_participant(sender_id)
    now = utcnow()

    msg = Message(
        conversation_id=conv.id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        body=content,
        created_at=now,
    )
    db.add(msg)
    conv.last_activity_at = now

    # a new inbound message always resurfaces a hidden thread for the receiver
    await db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == conv.id,
            ConversationParticipant.user_id == receiver_id,
            ConversationParticipant.hidden.is_(True),
        )
        .values(hidden=False, hidden_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.flush()

    await emit(
        db,
        aggregate_type="conversation",
        aggregate_id=conv.id,
        event_type="message.sent",
        actor_id=sender_id,
        payload={
            "conversation_id": conv.id,
            "message_id": msg.id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "listing_id": conv.listing_id,
            "preview": content[:PREVIEW_CHARS],
        },
    )

    item = {"type": "message", "message": serialize_message(msg)}
    realtime.stage(db, receiver_id, item)
    # sender's other open sessions
    realtime.stage(db, sender_id, item)
    return msg


async def send_direct(
    db: AsyncSession,
    *,
    sender_id: str,
    receiver_id: str,
    body: str | None,
    listing_id: str | None = None,
) -> Message:
    # validate before creating the thread so a blank message leaves nothing behind
    if not (body or "").strip():
        raise EmptyBody()
    conv = await get_or_create_conversation(db, user_a=sender_id, user_b=receiver_id, listing_id=listing_id)
    return await send_message(db, sender_id=sender_id, conversation_id=conv.id, body=body)


async def mark_read(db: AsyncSession, *, user_id: str, conversation_id: str) -> int:
    conv = await _load_for_participant(db, conversation_id, user_id)

    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conv.id,
            Message.receiver_id == user_id,
            Message.read.is_(False),
        )
        .values(read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    flipped = int(result.rowcount or 0)
    if flipped:
        realtime.stage(db, conv.other_participant(user_id), {
            "type": "read_receipt",
            "conversation_id": conv.id,
            "reader_id": user_id,
            "count": flipped,
        })
    return flipped


async def hide_conversation(db: AsyncSession, *, user_id: str, conversation_id: str) -> None:
    conv = await _load_for_participant(db, conversation_id, user_id)

    await db.execute(
        update(ConversationParticipant)
        .where(
            ConversationParticipant.conversation_id == conv.id,
            ConversationParticipant.user_id == user_id,
            ConversationParticipant.hidden.is_(False),
        )
        .values(hidden=True, hidden_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    log.info("conversation hidden", extra={"conversation_id": conv.id, "user_id": user_id})


async def get_thread(db: AsyncSession, *, user_id: str, conversation_id: str) -> Thread:
    """
    Conversation, listing summary and ordered messages in one call.
    Unknown ids and non-participants are indistinguishable.
    """
    conv = await db.get(Conversation, conversation_id)
    if conv is None or not conv.has_participant(user_id):
        raise ConversationNotFound()

    listing = await db.get(Listing, conv.listing_id) if conv.listing_id else None
    messages = (await db.execute(
        select(Message)
        .where(Message.conversation_id == conv.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    )).scalars().all()
    return Thread(conversation=conv, listing=listing, messages=list(messages))


async def _edge_messages(db: AsyncSession, ids: list[str], agg) -> dict[str, Message]:
    edge = (
        select(Message.conversation_id, agg(Message.created_at).label("ts"))
        .where(Message.conversation_id.in_(ids))
        .group_by(Message.conversation_id)
        .subquery()
    )
    stmt = select(Message).join(
        edge,
        and_(Message.conversation_id == edge.c.conversation_id, Message.created_at == edge.c.ts),
    )
    return {m.conversation_id: m for m in (await db.execute(stmt)).scalars().all()}


async def inbox(db: AsyncSession, *, user_id: str, box: str = "all") -> list[InboxItem]:
    if box not in BOXES:
        raise ReloopError(f"box must be one of {', '.join(BOXES)}")

    stmt = (
        select(Conversation)
        .join(
            ConversationParticipant,
            and_(
                ConversationParticipant.conversation_id == Conversation.id,
                ConversationParticipant.user_id == user_id,
            ),
        )
        .where(ConversationParticipant.hidden.is_(False))
        .order_by(Conversation.last_activity_at.desc())
    )
    convs = list((await db.execute(stmt)).scalars().all())
    if not convs:
        return []

    ids = [c.id for c in convs]
    last = await _edge_messages(db, ids, func.max)
    first = await _edge_messages(db, ids, func.min)

    unread_rows = (await db.execute(
        select(Message.conversation_id, func.count())
        .where(
            Message.conversation_id.in_(ids),
            Message.receiver_id == user_id,
            Message.read.is_(False),
        )
        .group_by(Message.conversation_id)
    )).all()
    unread = {cid: int(n) for cid, n in unread_rows}

    listing_ids = {c.listing_id for c in convs if c.listing_id}
    listings: dict[str, Listing] = {}
    if listing_ids:
        rows = (await db.execute(select(Listing).where(Listing.id.in_(listing_ids)))).scalars().all()
        listings = {lst.id: lst for lst in rows}

    items: list[InboxItem] = []
    for c in convs:
        first_msg = first.get(c.id)
        first_sender = first_msg.sender_id if first_msg else None
        if box == "received" and (first_sender is None or first_sender == user_id):
            continue
        if box == "sent" and first_sender != user_id:
            continue
        items.append(InboxItem(
            conversation=c,
            other_user_id=c.other_participant(user_id),
            listing=listings.get(c.listing_id) if c.listing_id else None,
            last_message=last.get(c.id),
            first_sender_id=first_sender,
            unread_count=unread.get(c.id, 0),
        ))
    return items
