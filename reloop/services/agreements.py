"""
Agreement handshake between a listing owner and one counterparty.

    propose   owner -> counterparty; listing active -> pending
    accept    counterparty; records the Transaction, listing -> completed
    confirm   owner-side handoff; same effect as accept
    decline   counterparty; listing back to active
    withdraw  owner; listing back to active

The pending-per-pair rule is a partial unique index and the insert is a
single INSERT ... ON CONFLICT DO NOTHING RETURNING, so concurrent or retried
proposals for the same pair resolve to one row. Resolution is a
compare-and-set on status='pending', so only one resolver ever wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from reloop.core.errors import (
    AgreementNotFound,
    AlreadyResolved,
    DuplicatePending,
    InvalidOutcome,
    InvalidTransition,
    ListingNotActive,
    NotCounterparty,
    NotOwner,
    NotParticipant,
    ReloopError,
    SelfDealing,
)
from reloop.core.ids import gen_id, utcnow
from reloop.models.agreement import Agreement
from reloop.models.listing import Listing
from reloop.services import listing_state, ledger
from reloop.services.audit import audit
from reloop.services.conversations import get_or_create_conversation
from reloop.services.events import emit
from reloop.services.listings import get_listing, transition_listing


log = logging.getLogger(__name__)

PENDING = "pending"

# outcome -> (who may call it, resulting status)
OUTCOMES = {
    "accept": ("counterparty", "accepted"),
    "decline": ("counterparty", "declined"),
    "withdraw": ("proposer", "withdrawn"),
    "confirm": ("proposer", "accepted"),
}


@dataclass(frozen=True)
class Resolution:
    agreement: Agreement
    listing: Listing
    transaction_id: str | None


def _insert(db: AsyncSession):
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def _pending_for_pair(db: AsyncSession, listing_id: str, counterparty_id: str) -> Agreement | None:
    stmt = select(Agreement).where(
        Agreement.listing_id == listing_id,
        Agreement.counterparty_id == counterparty_id,
        Agreement.status == PENDING,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_agreement(db: AsyncSession, agreement_id: str) -> Agreement:
    agreement = await db.get(Agreement, agreement_id)
    if agreement is None:
        raise AgreementNotFound()
    return agreement


async def propose(
    db: AsyncSession,
    *,
    proposer_id: str,
    listing_id: str,
    counterparty_id: str,
) -> Agreement:
    listing = await get_listing(db, listing_id)

    if proposer_id != listing.owner_id:
        raise NotOwner("You can only send agreements for your own listings")
    if proposer_id == counterparty_id:
        raise SelfDealing("Cannot send an agreement to yourself")
    # before the status check: a retried proposal must land here, not on ListingNotActive
    if await _pending_for_pair(db, listing_id, counterparty_id) is not None:
        raise DuplicatePending()
    if listing.status != listing_state.ACTIVE:
        raise ListingNotActive("Can only send agreements for active listings")

    conv = await get_or_create_conversation(
        db, user_a=proposer_id, user_b=counterparty_id, listing_id=listing_id
    )

    stmt = (
        _insert(db)(Agreement)
        .values(
            id=gen_id("agr"),
            listing_id=listing_id,
            proposer_id=proposer_id,
            counterparty_id=counterparty_id,
            conversation_id=conv.id,
            status=PENDING,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing(
            index_elements=["listing_id", "counterparty_id"],
            index_where=text("status = 'pending'"),
        )
        .returning(Agreement.id)
    )
    agreement_id = (await db.execute(stmt)).scalar_one_or_none()
    if agreement_id is None:
        raise DuplicatePending()

    agreement = await get_agreement(db, agreement_id)

    try:
        await transition_listing(
            db,
            listing_id=listing_id,
            actor_id=proposer_id,
            new_status=listing_state.PENDING,
        )
    except InvalidTransition as e:
        # another proposal took the listing between our read and the write
        raise ListingNotActive("Can only send agreements for active listings") from e

    await emit(
        db,
        aggregate_type="agreement",
        aggregate_id=agreement.id,
        event_type="agreement.proposed",
        actor_id=proposer_id,
        payload={
            "agreement_id": agreement.id,
            "listing_id": listing_id,
            "listing_title": listing.title,
            "proposer_id": proposer_id,
            "counterparty_id": counterparty_id,
            "conversation_id": conv.id,
        },
    )
    await audit(db, actor_id=proposer_id, action="agreement.proposed", target_type="agreement", target_id=agreement.id)

    log.info("agreement proposed", extra={"agreement_id": agreement.id, "listing_id": listing_id})
    return agreement


async def _release_listing(db: AsyncSession, *, agreement: Agreement, actor_id: str) -> Listing:
    """Put the listing back to active if this agreement is what held it."""
    listing = await get_listing(db, agreement.listing_id)
    if listing.status != listing_state.PENDING:
        return listing

    other = (await db.execute(
        select(Agreement.id).where(
            Agreement.listing_id == listing.id,
            Agreement.status == PENDING,
            Agreement.id != agreement.id,
        ).limit(1)
    )).scalar_one_or_none()
    if other is not None:
        return listing

    return await transition_listing(
        db,
        listing_id=listing.id,
        actor_id=actor_id,
        new_status=listing_state.ACTIVE,
        system=True,
    )


async def resolve(
    db: AsyncSession,
    *,
    actor_id: str,
    agreement_id: str,
    outcome: str,
) -> Resolution:
    if outcome not in OUTCOMES:
        raise InvalidOutcome(f"outcome must be one of {', '.join(OUTCOMES)}")
    role, new_status = OUTCOMES[outcome]

    agreement = await get_agreement(db, agreement_id)
    if actor_id not in (agreement.proposer_id, agreement.counterparty_id):
        raise NotParticipant("You are not part of this agreement")
    if agreement.status != PENDING:
        raise AlreadyResolved(f"This agreement was already {agreement.status}")
    if role == "counterparty" and actor_id != agreement.counterparty_id:
        raise NotCounterparty(f"Only the counterparty can {outcome}")
    if role == "proposer" and actor_id != agreement.proposer_id:
        raise NotOwner(f"Only the listing owner can {outcome}")

    now = utcnow()
    result = await db.execute(
        update(Agreement)
        .where(Agreement.id == agreement.id, Agreement.status == PENDING)
        .values(status=new_status, outcome=outcome, resolved_by=actor_id, resolved_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # lost the race to a concurrent resolve
        raise AlreadyResolved()
    for attr, value in (("status", new_status), ("outcome", outcome), ("resolved_by", actor_id), ("resolved_at", now)):
        set_committed_value(agreement, attr, value)

    transaction_id = None
    if new_status == "accepted":
        txn = await ledger.record_completion(db, agreement=agreement)
        transaction_id = txn.id
        listing = await transition_listing(
            db,
            listing_id=agreement.listing_id,
            actor_id=actor_id,
            new_status=listing_state.COMPLETED,
            system=True,
        )
    else:
        listing = await _release_listing(db, agreement=agreement, actor_id=actor_id)

    await emit(
        db,
        aggregate_type="agreement",
        aggregate_id=agreement.id,
        event_type="agreement.resolved",
        actor_id=actor_id,
        payload={
            "agreement_id": agreement.id,
            "listing_id": agreement.listing_id,
            "listing_title": listing.title,
            "proposer_id": agreement.proposer_id,
            "counterparty_id": agreement.counterparty_id,
            "conversation_id": agreement.conversation_id,
            "outcome": outcome,
            "status": new_status,
            "transaction_id": transaction_id,
        },
    )
    await audit(
        db,
        actor_id=actor_id,
        action=f"agreement.{outcome}",
        target_type="agreement",
        target_id=agreement.id,
        detail={"transaction_id": transaction_id} if transaction_id else None,
    )

    log.info("agreement %s", new_status, extra={"agreement_id": agreement.id, "listing_id": agreement.listing_id})
    return Resolution(agreement=agreement, listing=listing, transaction_id=transaction_id)


async def withdraw_pending_for_listing(db: AsyncSession, *, owner_id: str, listing_id: str) -> int:
    stmt = select(Agreement.id).where(Agreement.listing_id == listing_id, Agreement.status == PENDING)
    ids = (await db.execute(stmt)).scalars().all()
    for agreement_id in ids:
        await resolve(db, actor_id=owner_id, agreement_id=agreement_id, outcome="withdraw")
    return len(ids)


async def remove_listing(db: AsyncSession, *, owner_id: str, listing_id: str) -> Listing:
    """Soft-remove a listing, withdrawing whatever agreement is holding it."""
    listing = await get_listing(db, listing_id)
    if owner_id != listing.owner_id:
        raise NotOwner()

    await withdraw_pending_for_listing(db, owner_id=owner_id, listing_id=listing_id)
    listing = await transition_listing(
        db,
        listing_id=listing_id,
        actor_id=owner_id,
        new_status=listing_state.REMOVED,
    )
    await audit(db, actor_id=owner_id, action="listing.removed", target_type="listing", target_id=listing_id)
    return listing


async def list_agreements(
    db: AsyncSession,
    *,
    user_id: str,
    role: str = "all",
    status: str | None = None,
) -> list[tuple[Agreement, Listing]]:
    if role == "sent":
        cond = Agreement.proposer_id == user_id
    elif role == "received":
        cond = Agreement.counterparty_id == user_id
    elif role == "all":
        cond = or_(Agreement.proposer_id == user_id, Agreement.counterparty_id == user_id)
    else:
        raise ReloopError("role must be one of sent, received, all")

    stmt = select(Agreement, Listing).join(Listing, Listing.id == Agreement.listing_id).where(cond)
    if status:
        stmt = stmt.where(Agreement.status == status)
    stmt = stmt.order_by(Agreement.created_at.desc())
    return [(a, lst) for a, lst in (await db.execute(stmt)).all()]
