import asyncio

from sqlalchemy import func, select

from reloop.models.agreement import Agreement
from reloop.models.conversation import Conversation
from reloop.models.transaction import Transaction


async def test_concurrent_proposals_create_one_pending(client, session_factory, users, listing):
    alice, bob = users["alice"], users["bob"]

    async def propose():
        return await client.post(
            "/v1/agreements",
            headers=alice["headers"],
            json={"listingId": listing.id, "counterpartyId": bob["user_id"]},
        )

    responses = await asyncio.gather(*(propose() for _ in range(5)))
    codes = sorted(r.status_code for r in responses)
    assert codes.count(201) == 1, [r.text for r in responses]
    assert all(
        r.status_code == 409 and r.json()["error"]["code"] == "DUPLICATE_PENDING"
        for r in responses
        if r.status_code != 201
    )

    async with session_factory() as db:
        pending = (await db.execute(
            select(func.count()).select_from(Agreement).where(Agreement.status == "pending")
        )).scalar_one()
        conversations = (await db.execute(select(func.count()).select_from(Conversation))).scalar_one()
    assert pending == 1
    assert conversations == 1


async def test_concurrent_accept_and_withdraw_have_one_winner(client, session_factory, users, listing):
    alice, bob = users["alice"], users["bob"]
    r = await client.post(
        "/v1/agreements",
        headers=alice["headers"],
        json={"listingId": listing.id, "counterpartyId": bob["user_id"]},
    )
    agreement_id = r.json()["agreementId"]

    async def resolve(actor, outcome):
        return await client.post(
            f"/v1/agreements/{agreement_id}/resolve", headers=actor["headers"], json={"outcome": outcome}
        )

    responses = await asyncio.gather(resolve(bob, "accept"), resolve(bob, "accept"), resolve(alice, "withdraw"))
    codes = [r.status_code for r in responses]
    assert codes.count(200) == 1, [r.text for r in responses]
    assert all(
        r.json()["error"]["code"] == "ALREADY_RESOLVED" for r in responses if r.status_code != 200
    )

    async with session_factory() as db:
        agreement = await db.get(Agreement, agreement_id)
        txns = (await db.execute(select(func.count()).select_from(Transaction))).scalar_one()
    # a transaction exists exactly when the winner accepted
    assert txns == (1 if agreement.status == "accepted" else 0)


async def test_concurrent_proposals_to_different_users_lose_as_not_active(client, session_factory, users, listing):
    alice = users["alice"]

    async def propose(counterparty):
        return await client.post(
            "/v1/agreements",
            headers=alice["headers"],
            json={"listingId": listing.id, "counterpartyId": counterparty["user_id"]},
        )

    responses = await asyncio.gather(propose(users["bob"]), propose(users["carol"]))
    codes = sorted(r.status_code for r in responses)
    assert codes == [201, 400], [r.text for r in responses]
    loser = next(r for r in responses if r.status_code == 400)
    assert loser.json()["error"]["code"] == "LISTING_NOT_ACTIVE"

    async with session_factory() as db:
        pending = (await db.execute(
            select(func.count()).select_from(Agreement).where(Agreement.status == "pending")
        )).scalar_one()
    assert pending == 1
