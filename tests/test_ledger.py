import pytest
from sqlalchemy import select

from reloop.core.errors import AlreadyResolved, ReloopError
from reloop.models.transaction import Transaction
from reloop.services import agreements as agreement_service
from reloop.services import ledger


async def _completed(db, users, listing):
    agreement = await agreement_service.propose(
        db,
        proposer_id=users["alice"]["user_id"],
        listing_id=listing.id,
        counterparty_id=users["bob"]["user_id"],
    )
    res = await agreement_service.resolve(
        db, actor_id=users["bob"]["user_id"], agreement_id=agreement.id, outcome="accept"
    )
    await db.commit()
    return res


async def test_completion_writes_one_transaction(session_factory, users, listing):
    async with session_factory() as db:
        res = await _completed(db, users, listing)
        assert res.transaction_id
        txn = (await db.execute(select(Transaction).where(Transaction.listing_id == listing.id))).scalar_one()
        assert txn.id == res.transaction_id

        given = await ledger.list_transactions(db, user_id=users["alice"]["user_id"], role="given")
        received = await ledger.list_transactions(db, user_id=users["bob"]["user_id"], role="received")
        assert [t.id for t, _ in given] == [res.transaction_id]
        assert [t.id for t, _ in received] == [res.transaction_id]
        assert given[0][1].id == listing.id

        assert await ledger.list_transactions(db, user_id=users["carol"]["user_id"], role="received") == []


async def test_second_transaction_for_listing_is_rejected(session_factory, users, listing):
    async with session_factory() as db:
        res = await _completed(db, users, listing)

    async with session_factory() as db:
        agreement = await agreement_service.get_agreement(db, res.agreement.id)
        with pytest.raises(AlreadyResolved):
            await ledger.record_completion(db, agreement=agreement)


async def test_unknown_role_is_rejected(db_session, users):
    with pytest.raises(ReloopError):
        await ledger.list_transactions(db_session, user_id=users["alice"]["user_id"], role="lent")


async def test_transactions_endpoint_validates_role(client, users):
    r = await client.get("/v1/transactions", headers=users["alice"]["headers"], params={"role": "lent"})
    assert r.status_code == 400
