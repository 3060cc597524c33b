"""
Transaction ledger: the append-only record of completed exchanges.

The only writer is the agreement service's completion path; nothing here is
reachable from the HTTP layer for creation. The ledger is the single source
for the "given" / "received" history of a user.
"""
from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reloop.core.errors import AlreadyResolved, ReloopError
from reloop.models.agreement import Agreement
from reloop.models.listing import Listing
from reloop.models.transaction import Transaction

ROLES = ("given", "received")


def completed_listing_ids() -> Select:
    return select(Transaction.listing_id)


async def record_completion(db: AsyncSession, *, agreement: Agreement) -> Transaction:
    txn = Transaction(
        listing_id=agreement.listing_id,
        agreement_id=agreement.id,
        from_party=agreement.proposer_id,
        to_party=agreement.counterparty_id,
    )
    db.add(txn)
    try:
        await db.flush()
    except IntegrityError as e:
        # unique(listing_id): the listing already has its one transaction
        raise AlreadyResolved("This listing was already exchanged") from e
    return txn


async def list_transactions(
    db: AsyncSession,
    *,
    user_id: str,
    role: str,
) -> list[tuple[Transaction, Listing]]:
    if role == "given":
        cond = Transaction.from_party == user_id
    elif role == "received":
        cond = Transaction.to_party == user_id
    else:
        raise ReloopError(f"role must be one of {', '.join(ROLES)}")

    stmt = (
        select(Transaction, Listing)
        .join(Listing, Listing.id == Transaction.listing_id)
        .where(cond)
        .order_by(Transaction.completed_at.desc())
    )
    return [(t, lst) for t, lst in (await db.execute(stmt)).all()]
