from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from reloop.core.ids import gen_id, utcnow

from reloop.models.base import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_receiver_unread", "receiver_id", "read"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("msg"))
    conversation_id: Mapped[str] = mapped_column(String, ForeignKey("conversations.id"), nullable=False)

    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # denormalized from the conversation pair; markRead and unread counts filter on it
    receiver_id: Mapped[str] = mapped_column(String(64), nullable=False)

    body: Mapped[str] = mapped_column(Text, nullable=False)

    # the only mutable field, flipped by the receiver
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
