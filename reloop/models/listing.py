from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from reloop.core.ids import gen_id, utcnow

from reloop.models.base import Base, JSONType, TimestampMixin


LISTING_INTENTS = ("give", "swap", "sell", "request", "rehome")
LISTING_STATUSES = ("active", "pending", "completed", "expired", "removed")


class Listing(TimestampMixin, Base):
    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint(
            "intent IN ('give', 'swap', 'sell', 'request', 'rehome')", name="ck_listing_intent"
        ),
        CheckConstraint(
            "status IN ('active', 'pending', 'completed', 'expired', 'removed')", name="ck_listing_status"
        ),
        Index("ix_listings_status_created", "status", "created_at"),
        Index("ix_listings_owner", "owner_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lst"))

    # identity lives outside the core; this is the authenticated user id
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    intent: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    # opaque to the core
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attributes: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ListingView(Base):
    __tablename__ = "listing_views"
    __table_args__ = (
        Index("ix_listing_views_listing_viewer", "listing_id", "viewer_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lvw"))
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False)
    viewer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
