from datetime import timedelta

import pytest
from sqlalchemy import select, update

from reloop.core.errors import InvalidTransition
from reloop.core.ids import utcnow
from reloop.models.listing import Listing
from reloop.models.outbox import OutboxEvent
from reloop.services import listings as listing_service


async def test_create_and_get_listing(client, users):
    alice = users["alice"]
    r = await client.post(
        "/v1/listings",
        headers=alice["headers"],
        json={"intent": "swap", "title": "Road bike", "attributes": {"size": "M"}},
    )
    assert r.status_code == 201, r.text
    created = r.json()
    assert created["status"] == "active"
    assert created["owner_id"] == alice["user_id"]

    r = await client.get(f"/v1/listings/{created['id']}")
    assert r.status_code == 200
    assert r.json()["attributes"] == {"size": "M"}


async def test_create_rejects_unknown_intent(client, users):
    r = await client.post(
        "/v1/listings",
        headers=users["alice"]["headers"],
        json={"intent": "lend", "title": "Ladder"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_get_unknown_listing_is_404(client):
    r = await client.get("/v1/listings/lst_missing")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "LISTING_NOT_FOUND"


async def test_browse_filters_by_intent(client, users, listing):
    await client.post(
        "/v1/listings", headers=users["bob"]["headers"], json={"intent": "request", "title": "Need a pram"}
    )

    r = await client.get("/v1/listings", params={"intent": "give"})
    assert r.status_code == 200
    assert [x["id"] for x in r.json()] == [listing.id]


async def test_browse_hides_listing_with_transaction_even_if_active(client, session_factory, users, listing):
    r = await client.post(
        "/v1/agreements",
        headers=users["alice"]["headers"],
        json={"listingId": listing.id, "counterpartyId": users["bob"]["user_id"]},
    )
    agreement_id = r.json()["agreementId"]
    r = await client.post(
        f"/v1/agreements/{agreement_id}/resolve", headers=users["bob"]["headers"], json={"outcome": "accept"}
    )
    assert r.status_code == 200, r.text

    # force the status back behind the service's back
    async with session_factory() as db:
        await db.execute(update(Listing).where(Listing.id == listing.id).values(status="active"))
        await db.commit()

    r = await client.get("/v1/listings")
    assert listing.id not in [x["id"] for x in r.json()]


async def test_mine_excludes_removed(client, users, listing):
    r = await client.delete(f"/v1/listings/{listing.id}", headers=users["alice"]["headers"])
    assert r.status_code == 200
    assert r.json()["status"] == "removed"

    r = await client.get("/v1/listings/mine", headers=users["alice"]["headers"])
    assert r.json() == []


async def test_only_owner_can_remove(client, users, listing):
    r = await client.delete(f"/v1/listings/{listing.id}", headers=users["bob"]["headers"])
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "NOT_OWNER"


async def test_removed_listing_cannot_be_removed_again(client, users, listing):
    await client.delete(f"/v1/listings/{listing.id}", headers=users["alice"]["headers"])
    r = await client.delete(f"/v1/listings/{listing.id}", headers=users["alice"]["headers"])
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INVALID_TRANSITION"


async def test_removing_pending_listing_withdraws_agreement(client, users, listing):
    alice, bob = users["alice"], users["bob"]
    r = await client.post(
        "/v1/agreements",
        headers=alice["headers"],
        json={"listingId": listing.id, "counterpartyId": bob["user_id"]},
    )
    assert r.status_code == 201

    r = await client.delete(f"/v1/listings/{listing.id}", headers=alice["headers"])
    assert r.status_code == 200
    assert r.json()["status"] == "removed"

    r = await client.get("/v1/agreements", headers=bob["headers"], params={"role": "received"})
    assert [a["status"] for a in r.json()] == ["withdrawn"]


async def test_transition_compare_and_set(session_factory, users, listing):
    # two sessions read "active"; only the first write wins
    async with session_factory() as a, session_factory() as b:
        await listing_service.get_listing(a, listing.id)
        await listing_service.get_listing(b, listing.id)

        await listing_service.transition_listing(
            a, listing_id=listing.id, actor_id=listing.owner_id, new_status="removed"
        )
        await a.commit()

        with pytest.raises(InvalidTransition):
            await listing_service.transition_listing(
                b, listing_id=listing.id, actor_id=listing.owner_id, new_status="pending"
            )


async def test_expire_stale_only_touches_old_active(session_factory, users, listing):
    async with session_factory() as db:
        old = await listing_service.create_listing(db, owner_id=users["bob"]["user_id"], intent="sell", title="Old lamp")
        await db.flush()
        await db.execute(
            update(Listing).where(Listing.id == old.id).values(created_at=utcnow() - timedelta(days=120))
        )
        await db.commit()

    async with session_factory() as db:
        n = await listing_service.expire_stale(db, max_age_days=90)
        await db.commit()
    assert n == 1

    async with session_factory() as db:
        statuses = dict((await db.execute(select(Listing.id, Listing.status))).all())
        assert statuses[old.id] == "expired"
        assert statuses[listing.id] == "active"

        ev = (await db.execute(
            select(OutboxEvent).where(
                OutboxEvent.event_type == "listing.status_changed",
                OutboxEvent.aggregate_id == old.id,
            )
        )).scalar_one()
        assert ev.actor_id == "system"
        assert ev.payload["to"] == "expired"


async def test_view_counts_once_per_user_per_window(client, users, listing):
    bob = users["bob"]
    r1 = await client.post(f"/v1/listings/{listing.id}/view", headers=bob["headers"])
    r2 = await client.post(f"/v1/listings/{listing.id}/view", headers=bob["headers"])
    r3 = await client.post(f"/v1/listings/{listing.id}/view", headers=users["carol"]["headers"])
    assert [r.json()["counted"] for r in (r1, r2, r3)] == [True, False, True]

    r = await client.get(f"/v1/listings/{listing.id}")
    assert r.json()["view_count"] == 2


async def test_anonymous_view_without_limiter_is_not_counted(client, listing):
    r = await client.post(f"/v1/listings/{listing.id}/view")
    assert r.status_code == 200
    assert r.json()["counted"] is False


async def test_anonymous_view_goes_through_limiter(session_factory, listing):
    class FakeLimiter:
        def __init__(self):
            self.keys = []

        async def hit(self, key, *, limit, window_seconds):
            self.keys.append(key)
            return self.keys.count(key) <= limit

    limiter = FakeLimiter()
    async with session_factory() as db:
        first = await listing_service.record_view(
            db, listing_id=listing.id, viewer_id=None, client_ip="10.0.0.1", dedupe_hours=24, limiter=limiter
        )
        second = await listing_service.record_view(
            db, listing_id=listing.id, viewer_id=None, client_ip="10.0.0.1", dedupe_hours=24, limiter=limiter
        )
        await db.commit()

    assert (first, second) == (True, False)
    assert limiter.keys == [f"view:{listing.id}:10.0.0.1"] * 2

