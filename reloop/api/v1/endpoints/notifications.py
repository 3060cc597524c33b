from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.db import get_db
from reloop.models.notification import Notification
from reloop.schemas.notification import MarkAllReadOut, NotificationOut, UnreadCountOut
from reloop.services import notifications as notification_service
from reloop.services.auth import Viewer, get_viewer

router = APIRouter()


def _out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id,
        type=n.type,
        title=n.title,
        message=n.message,
        link=n.link,
        payload=n.payload,
        read=n.read,
        created_at=n.created_at,
    )


@router.get("/notifications", response_model=list[NotificationOut])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
    rows = await notification_service.list_notifications(
        db, user_id=viewer.user_id, unread_only=unread_only, limit=limit
    )
    return [_out(n) for n in rows]


@router.get("/notifications/unread-count", response_model=UnreadCountOut)
async def unread_count(
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountOut:
    return UnreadCountOut(unread=await notification_service.unread_count(db, user_id=viewer.user_id))


@router.post("/notifications/read-all", response_model=MarkAllReadOut)
async def mark_all_read(
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> MarkAllReadOut:
    updated = await notification_service.mark_all_read(db, user_id=viewer.user_id)
    await db.commit()
    return MarkAllReadOut(updated=updated)


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: str,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> NotificationOut:
    n = await notification_service.mark_read(db, user_id=viewer.user_id, notification_id=notification_id)
    await db.commit()
    return _out(n)
