from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.db import get_db
from reloop.core.deadline import within_deadline
from reloop.models.conversation import Conversation
from reloop.models.message import Message
from reloop.schemas.common import StatusOut
from reloop.schemas.conversation import (
    ConversationCreate,
    ConversationOut,
    ConversationRef,
    DirectMessageCreate,
    InboxItemOut,
    MarkReadOut,
    MessageCreate,
    MessageOut,
)
from reloop.schemas.listing import summarize
from reloop.services import conversations as conversation_service
from reloop.services.auth import Viewer, get_viewer

router = APIRouter()


def message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        conversation_id=m.conversation_id,
        sender_id=m.sender_id,
        body=m.body,
        read=m.read,
        created_at=m.created_at,
    )


def _ref(c: Conversation) -> ConversationRef:
    return ConversationRef(
        id=c.id,
        participants=list(c.participants),
        listing_id=c.listing_id,
        last_activity_at=c.last_activity_at,
    )


@router.post("/conversations", response_model=ConversationRef)
async def open_conversation(
    payload: ConversationCreate,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> ConversationRef:
    conv = await conversation_service.get_or_create_conversation(
        db,
        user_a=viewer.user_id,
        user_b=payload.other_user_id,
        listing_id=payload.listing_id,
    )
    await db.commit()
    return _ref(conv)


@router.get("/conversations", response_model=list[InboxItemOut])
async def list_inbox(
    box: str = Query(default="all", pattern="^(all|received|sent)$"),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> list[InboxItemOut]:
    items = await conversation_service.inbox(db, user_id=viewer.user_id, box=box)
    return [
        InboxItemOut(
            id=i.conversation.id,
            other_user_id=i.other_user_id,
            listing=summarize(i.listing) if i.listing else None,
            last_activity_at=i.conversation.last_activity_at,
            last_message=message_out(i.last_message) if i.last_message else None,
            unread_count=i.unread_count,
            is_my_listing=bool(i.listing and i.listing.owner_id == viewer.user_id),
        )
        for i in items
    ]


@router.get("/conversations/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: str,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> ConversationOut:
    thread = await conversation_service.get_thread(db, user_id=viewer.user_id, conversation_id=conversation_id)
    return ConversationOut(
        id=thread.conversation.id,
        participants=list(thread.conversation.participants),
        listing=summarize(thread.listing) if thread.listing else None,
        last_activity_at=thread.conversation.last_activity_at,
        messages=[message_out(m) for m in thread.messages],
    )


@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def send_message(
    conversation_id: str,
    payload: MessageCreate,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> MessageOut:
    msg = await within_deadline(
        conversation_service.send_message(
            db,
            sender_id=viewer.user_id,
            conversation_id=conversation_id,
            body=payload.text,
        )
    )
    await db.commit()
    return message_out(msg)


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadOut)
async def mark_conversation_read(
    conversation_id: str,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> MarkReadOut:
    updated = await conversation_service.mark_read(db, user_id=viewer.user_id, conversation_id=conversation_id)
    await db.commit()
    return MarkReadOut(updated=updated)


@router.post("/conversations/{conversation_id}/hide", response_model=StatusOut)
async def hide_conversation(
    conversation_id: str,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> StatusOut:
    await conversation_service.hide_conversation(db, user_id=viewer.user_id, conversation_id=conversation_id)
    await db.commit()
    return StatusOut(status="hidden")


@router.post("/messages", response_model=MessageOut, status_code=201)
async def send_direct_message(
    payload: DirectMessageCreate,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> MessageOut:
    msg = await within_deadline(
        conversation_service.send_direct(
            db,
            sender_id=viewer.user_id,
            receiver_id=payload.receiver_id,
            body=payload.text,
            listing_id=payload.listing_id,
        )
    )
    await db.commit()
    return message_out(msg)
