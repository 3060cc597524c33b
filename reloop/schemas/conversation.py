from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from reloop.schemas.listing import ListingSummary


class ConversationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    other_user_id: str = Field(alias="otherUserId", min_length=1)
    listing_id: str | None = Field(default=None, alias="listingId")


class MessageCreate(BaseModel):
    # blank/oversize checks live in the service so they map to EmptyBody/BodyTooLong
    text: str | None = None


class DirectMessageCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receiver_id: str = Field(alias="receiverId", min_length=1)
    text: str | None = None
    listing_id: str | None = Field(default=None, alias="listingId")


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    body: str
    read: bool
    created_at: datetime


class ConversationRef(BaseModel):
    id: str
    participants: list[str]
    listing_id: str | None
    last_activity_at: datetime


class ConversationOut(BaseModel):
    id: str
    participants: list[str]
    listing: ListingSummary | None
    last_activity_at: datetime
    messages: list[MessageOut]


class InboxItemOut(BaseModel):
    id: str
    other_user_id: str
    listing: ListingSummary | None
    last_activity_at: datetime
    last_message: MessageOut | None
    unread_count: int
    is_my_listing: bool


class MarkReadOut(BaseModel):
    updated: int
