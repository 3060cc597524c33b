import pytest
from sqlalchemy import func, select

from reloop.core.config import settings
from reloop.core.errors import NotificationNotFound, NotRecipient
from reloop.models.notification import Notification
from reloop.models.outbox import OutboxEvent
from reloop.services import notifications as notification_service
from reloop.services.events import emit


async def _propose(client, users, listing):
    r = await client.post(
        "/v1/agreements",
        headers=users["alice"]["headers"],
        json={"listingId": listing.id, "counterpartyId": users["bob"]["user_id"]},
    )
    assert r.status_code == 201, r.text
    return r.json()["agreementId"]


async def test_proposal_notifies_counterparty_not_actor(client, users, listing):
    await _propose(client, users, listing)

    bob_feed = (await client.get("/v1/notifications", headers=users["bob"]["headers"])).json()
    alice_feed = (await client.get("/v1/notifications", headers=users["alice"]["headers"])).json()

    assert [n["type"] for n in bob_feed] == ["agreement.proposed"]
    assert bob_feed[0]["title"] == "New exchange agreement"
    assert bob_feed[0]["message"] == "Oak bookshelf"
    assert bob_feed[0]["link"].startswith("/messages/cnv_")
    assert alice_feed == []


async def test_resolution_notifies_the_other_party(client, users, listing):
    agreement_id = await _propose(client, users, listing)
    await client.post(
        f"/v1/agreements/{agreement_id}/resolve", headers=users["bob"]["headers"], json={"outcome": "accept"}
    )

    alice_feed = (await client.get("/v1/notifications", headers=users["alice"]["headers"])).json()
    assert [n["type"] for n in alice_feed] == ["agreement.resolved"]
    assert alice_feed[0]["payload"]["outcome"] == "accept"

    bob_types = [n["type"] for n in (await client.get("/v1/notifications", headers=users["bob"]["headers"])).json()]
    assert "agreement.resolved" not in bob_types


async def test_message_notifies_receiver(client, users):
    r = await client.post(
        "/v1/messages",
        headers=users["bob"]["headers"],
        json={"receiverId": users["alice"]["user_id"], "text": "hello there"},
    )
    assert r.status_code == 201

    r = await client.get("/v1/notifications/unread-count", headers=users["alice"]["headers"])
    assert r.json()["unread"] == 1
    r = await client.get("/v1/notifications/unread-count", headers=users["bob"]["headers"])
    assert r.json()["unread"] == 0


async def test_mark_read_and_mark_all(client, users, listing):
    await _propose(client, users, listing)
    await client.post(
        "/v1/messages",
        headers=users["alice"]["headers"],
        json={"receiverId": users["bob"]["user_id"], "text": "ping"},
    )
    bob = users["bob"]

    feed = (await client.get("/v1/notifications", headers=bob["headers"])).json()
    assert len(feed) == 2

    r = await client.post(f"/v1/notifications/{feed[0]['id']}/read", headers=bob["headers"])
    assert r.status_code == 200
    assert r.json()["read"] is True
    assert (await client.get("/v1/notifications/unread-count", headers=bob["headers"])).json()["unread"] == 1

    unread = (await client.get("/v1/notifications", headers=bob["headers"], params={"unread_only": True})).json()
    assert [n["id"] for n in unread] == [feed[1]["id"]]

    r = await client.post("/v1/notifications/read-all", headers=bob["headers"])
    assert r.json()["updated"] == 1
    assert (await client.get("/v1/notifications/unread-count", headers=bob["headers"])).json()["unread"] == 0


async def test_mark_read_of_someone_elses_notification(client, users, listing):
    await _propose(client, users, listing)
    feed = (await client.get("/v1/notifications", headers=users["bob"]["headers"])).json()

    r = await client.post(f"/v1/notifications/{feed[0]['id']}/read", headers=users["carol"]["headers"])
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "NOT_RECIPIENT"

    r = await client.post("/v1/notifications/ntf_missing/read", headers=users["carol"]["headers"])
    assert r.status_code == 404


async def test_service_mark_read_errors(db_session, users):
    with pytest.raises(NotificationNotFound):
        await notification_service.mark_read(db_session, user_id="usr_alice", notification_id="ntf_nope")

    db_session.add(Notification(recipient_id="usr_bob", type="message.sent", title="New message"))
    await db_session.flush()
    n = (await db_session.execute(select(Notification))).scalar_one()
    with pytest.raises(NotRecipient):
        await notification_service.mark_read(db_session, user_id="usr_alice", notification_id=n.id)


async def test_replaying_an_event_creates_nothing_new(session_factory, users, monkeypatch):
    monkeypatch.setattr(settings, "notification_dispatch_mode", "outbox")

    async with session_factory() as db:
        ev = await emit(
            db,
            aggregate_type="conversation",
            aggregate_id="cnv_x",
            event_type="message.sent",
            actor_id="usr_bob",
            payload={
                "conversation_id": "cnv_x",
                "message_id": "msg_x",
                "sender_id": "usr_bob",
                "receiver_id": "usr_alice",
                "preview": "hi",
            },
        )
        await db.commit()
        assert ev.status == "pending"

        first = await notification_service.handle_event(db, ev)
        await db.commit()
        again = await notification_service.handle_event(db, ev)
        await db.commit()

        assert len(first) == 1
        assert again == []
        count = (await db.execute(select(func.count()).select_from(Notification))).scalar_one()
        assert count == 1


async def test_actor_is_never_notified(db_session):
    ev = OutboxEvent(
        id="obx_self",
        aggregate_type="agreement",
        aggregate_id="agr_x",
        event_type="agreement.resolved",
        actor_id="usr_alice",
        payload={
            "agreement_id": "agr_x",
            "listing_id": "lst_x",
            # a degenerate payload where both sides are the actor
            "proposer_id": "usr_alice",
            "counterparty_id": "usr_alice",
            "outcome": "withdraw",
        },
    )
    db_session.add(ev)
    await db_session.flush()

    assert await notification_service.handle_event(db_session, ev) == []


async def test_expiry_notifies_owner(db_session):
    ev = OutboxEvent(
        id="obx_exp",
        aggregate_type="listing",
        aggregate_id="lst_x",
        event_type="listing.status_changed",
        actor_id="system",
        payload={"listing_id": "lst_x", "owner_id": "usr_alice", "title": "Lamp", "from": "active", "to": "expired"},
    )
    db_session.add(ev)
    await db_session.flush()

    created = await notification_service.handle_event(db_session, ev)
    assert [(n.recipient_id, n.title) for n in created] == [("usr_alice", "Your listing expired")]
