from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from reloop.core.ids import gen_id, utcnow

from reloop.models.base import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # pair is stored ordered so (a, b) and (b, a) collide
        CheckConstraint("user_low < user_high", name="ck_conversation_pair_ordered"),
        Index(
            "uq_conversation_pair_listing",
            "user_low", "user_high", "listing_id",
            unique=True,
            postgresql_where=text("listing_id IS NOT NULL"),
            sqlite_where=text("listing_id IS NOT NULL"),
        ),
        Index(
            "uq_conversation_pair_direct",
            "user_low", "user_high",
            unique=True,
            postgresql_where=text("listing_id IS NULL"),
            sqlite_where=text("listing_id IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cnv"))

    user_low: Mapped[str] = mapped_column(String(64), nullable=False)
    user_high: Mapped[str] = mapped_column(String(64), nullable=False)
    listing_id: Mapped[str | None] = mapped_column(String, ForeignKey("listings.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def participants(self) -> tuple[str, str]:
        return (self.user_low, self.user_high)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user_low, self.user_high)

    def other_participant(self, user_id: str) -> str:
        return self.user_high if user_id == self.user_low else self.user_low


class ConversationParticipant(Base):
    """Per-viewer state of a conversation. Hiding is local to this row."""

    __tablename__ = "conversation_participants"
    __table_args__ = (
        Index("ix_conversation_participants_user", "user_id", "hidden"),
    )

    conversation_id: Mapped[str] = mapped_column(String, ForeignKey("conversations.id"), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
