from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from reloop.core.ids import gen_id, utcnow

from reloop.models.base import Base


AGREEMENT_STATUSES = ("pending", "accepted", "declined", "withdrawn")


class Agreement(Base):
    __tablename__ = "agreements"
    __table_args__ = (
        # at most one pending agreement per (listing, counterparty)
        Index(
            "uq_agreement_pending_pair",
            "listing_id", "counterparty_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        CheckConstraint("proposer_id <> counterparty_id", name="ck_agreement_distinct_parties"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'withdrawn')", name="ck_agreement_status"
        ),
        Index("ix_agreements_proposer", "proposer_id"),
        Index("ix_agreements_counterparty", "counterparty_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("agr"))
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False)

    # proposer is always the listing owner at proposal time
    proposer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    counterparty_id: Mapped[str] = mapped_column(String(64), nullable=False)

    conversation_id: Mapped[str | None] = mapped_column(String, ForeignKey("conversations.id"), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    # accept | decline | withdraw | confirm
    outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
