from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from reloop.core.ids import gen_id, utcnow

from reloop.models.base import Base


class Transaction(Base):
    """Completed exchange. Append-once per listing, never updated."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_from_party", "from_party"),
        Index("ix_transactions_to_party", "to_party"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("txn"))
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False, unique=True)
    agreement_id: Mapped[str] = mapped_column(String, ForeignKey("agreements.id"), nullable=False, unique=True)

    from_party: Mapped[str] = mapped_column(String(64), nullable=False)
    to_party: Mapped[str] = mapped_column(String(64), nullable=False)

    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
