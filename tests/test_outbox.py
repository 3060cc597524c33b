from datetime import timedelta

from sqlalchemy import select, update

from reloop.core.config import settings
from reloop.core.ids import utcnow
from reloop.models.notification import Notification
from reloop.models.outbox import OutboxEvent
from reloop.services import outbox_dispatcher


async def _queue_message_event(client, users, monkeypatch):
    monkeypatch.setattr(settings, "notification_dispatch_mode", "outbox")
    r = await client.post(
        "/v1/messages",
        headers=users["bob"]["headers"],
        json={"receiverId": users["alice"]["user_id"], "text": "queued"},
    )
    assert r.status_code == 201


async def test_outbox_mode_defers_notifications(client, session_factory, users, monkeypatch):
    await _queue_message_event(client, users, monkeypatch)

    async with session_factory() as db:
        assert (await db.execute(select(Notification))).scalars().all() == []
        statuses = (await db.execute(select(OutboxEvent.status))).scalars().all()
        assert statuses == ["pending"]


async def test_dispatch_then_process(client, session_factory, users, monkeypatch):
    await _queue_message_event(client, users, monkeypatch)

    enqueued = []
    async with session_factory() as db:
        n = await outbox_dispatcher.dispatch_outbox(db, lambda oid, lid: enqueued.append((oid, lid)))
    assert n == 1

    outbox_id, lease_id = enqueued[0]
    async with session_factory() as db:
        assert await outbox_dispatcher.process_event(db, outbox_id, lease_id) is True

    async with session_factory() as db:
        ev = await db.get(OutboxEvent, outbox_id)
        assert ev.status == "done"
        assert ev.lease_id is None
        recipients = (await db.execute(select(Notification.recipient_id))).scalars().all()
        assert recipients == [users["alice"]["user_id"]]

    # a stale or replayed task is a no-op
    async with session_factory() as db:
        assert await outbox_dispatcher.process_event(db, outbox_id, lease_id) is False


async def test_wrong_lease_is_ignored(client, session_factory, users, monkeypatch):
    await _queue_message_event(client, users, monkeypatch)

    enqueued = []
    async with session_factory() as db:
        await outbox_dispatcher.dispatch_outbox(db, lambda oid, lid: enqueued.append((oid, lid)))

    outbox_id, _ = enqueued[0]
    async with session_factory() as db:
        assert await outbox_dispatcher.process_event(db, outbox_id, "not-my-lease") is False
        ev = await db.get(OutboxEvent, outbox_id)
        assert ev.status == "processing"


async def test_failed_enqueue_returns_event_to_pending(client, session_factory, users, monkeypatch):
    await _queue_message_event(client, users, monkeypatch)

    def broken(outbox_id, lease_id):
        raise ConnectionError("broker down")

    async with session_factory() as db:
        assert await outbox_dispatcher.dispatch_outbox(db, broken) == 0

    async with session_factory() as db:
        ev = (await db.execute(select(OutboxEvent))).scalar_one()
        assert ev.status == "pending"
        assert ev.lease_id is None
        assert "broker down" in ev.last_error


async def test_expired_lease_is_requeued(client, session_factory, users, monkeypatch):
    await _queue_message_event(client, users, monkeypatch)

    async with session_factory() as db:
        await outbox_dispatcher.dispatch_outbox(db, lambda oid, lid: None)

    async with session_factory() as db:
        await db.execute(update(OutboxEvent).values(lease_expires_at=utcnow() - timedelta(minutes=1)))
        await db.commit()

    async with session_factory() as db:
        assert await outbox_dispatcher.requeue_expired_leases(db) == 1
        await db.commit()

    async with session_factory() as db:
        ev = (await db.execute(select(OutboxEvent))).scalar_one()
        assert ev.status == "pending"
        assert ev.attempts == 1
