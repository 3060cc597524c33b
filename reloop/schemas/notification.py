from datetime import datetime

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: str
    type: str
    title: str
    message: str
    link: str | None
    payload: dict
    read: bool
    created_at: datetime


class UnreadCountOut(BaseModel):
    unread: int


class MarkAllReadOut(BaseModel):
    updated: int
