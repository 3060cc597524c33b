"""
Per-user push channel for messages and notifications.

Writers never publish directly: they stage events on the SQLAlchemy session
with `stage()`, and the session's after_commit hook hands them to the hub.
A rolled back session drops its staged events, so a client never sees a
push for a write that did not land.

Each subscription owns a bounded queue that drops the oldest item when full,
so publishing never blocks the writer.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import defaultdict, deque
from typing import Any

import redis.asyncio as redis
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from reloop.core.config import settings


log = logging.getLogger(__name__)

_PENDING_KEY = "realtime_pending"


class Subscription:
    def __init__(self, user_id: str, maxsize: int):
        self.user_id = user_id
        self._queue: deque[dict[str, Any]] = deque(maxlen=maxsize)
        self._ready = asyncio.Event()
        self.dropped = 0

    def push(self, item: dict[str, Any]) -> None:
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
        self._queue.append(item)
        self._ready.set()

    def drain(self) -> list[dict[str, Any]]:
        items = list(self._queue)
        self._queue.clear()
        self._ready.clear()
        return items

    async def get(self) -> dict[str, Any]:
        while not self._queue:
            self._ready.clear()
            await self._ready.wait()
        return self._queue.popleft()


class RealtimeHub:
    def __init__(self, queue_size: int):
        self.queue_size = queue_size
        self._subs: dict[str, set[Subscription]] = defaultdict(set)
        self.relay: RedisRelay | None = None

    def subscribe(self, user_id: str) -> Subscription:
        sub = Subscription(user_id, self.queue_size)
        self._subs[user_id].add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.user_id)
        if not subs:
            return
        subs.discard(sub)
        if not subs:
            del self._subs[sub.user_id]

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subs.get(user_id, ()))

    def deliver_local(self, user_id: str, item: dict[str, Any]) -> int:
        subs = self._subs.get(user_id, ())
        for sub in subs:
            sub.push(item)
        return len(subs)

    def publish(self, user_id: str, item: dict[str, Any]) -> int:
        delivered = self.deliver_local(user_id, item)
        if self.relay is not None:
            self.relay.forward(user_id, item)
        return delivered


class RedisRelay:
    """Fans hub publishes out across processes through Redis pub/sub."""

    CHANNEL_PREFIX = "rt:user:"
    RECONNECT_MIN_SECONDS = 0.5
    RECONNECT_MAX_SECONDS = 30.0

    def __init__(self, hub: RealtimeHub, redis_url: str):
        self.hub = hub
        self.r = redis.from_url(redis_url, decode_responses=True)
        self.origin = uuid.uuid4().hex
        self._inflight: set[asyncio.Task] = set()
        self.subscribed = False

    def forward(self, user_id: str, item: dict[str, Any]) -> None:
        data = json.dumps({"origin": self.origin, "item": item}, default=str)
        task = asyncio.get_running_loop().create_task(self.r.publish(f"{self.CHANNEL_PREFIX}{user_id}", data))
        self._inflight.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("realtime relay publish failed: %s", task.exception())

    async def flush(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def run(self) -> None:
        """Relay remote publishes into the local hub until cancelled, reconnecting on Redis errors."""
        delay = self.RECONNECT_MIN_SECONDS
        while True:
            self.subscribed = False
            try:
                await self._listen()
            except (redis.RedisError, OSError):
                log.exception("realtime relay lost redis; reconnecting in %.1fs", delay)
            else:
                # listen() ended without an error: the connection was closed under us
                log.warning("realtime relay subscription ended; reconnecting in %.1fs", delay)
            if self.subscribed:
                delay = self.RECONNECT_MIN_SECONDS
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.RECONNECT_MAX_SECONDS)

    async def _listen(self) -> None:
        pubsub = self.r.pubsub()
        try:
            await pubsub.psubscribe(f"{self.CHANNEL_PREFIX}*")
            self.subscribed = True
            async for msg in pubsub.listen():
                self.receive(msg)
        finally:
            await pubsub.aclose()

    def receive(self, msg: dict[str, Any]) -> bool:
        if msg.get("type") != "pmessage":
            return False
        try:
            data = json.loads(msg["data"])
            origin, item = data.get("origin"), data["item"]
            user_id = msg["channel"][len(self.CHANNEL_PREFIX):]
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning("realtime relay skipped malformed frame on %s", msg.get("channel"))
            return False
        if origin == self.origin:
            return False
        self.hub.deliver_local(user_id, item)
        return True


hub = RealtimeHub(settings.realtime_queue_size)


def stage(db: AsyncSession, user_id: str, item: dict[str, Any]) -> None:
    db.sync_session.info.setdefault(_PENDING_KEY, []).append((user_id, item))


@event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    for user_id, item in session.info.pop(_PENDING_KEY, []):
        hub.publish(user_id, item)


@event.listens_for(Session, "after_transaction_end")
def _discard_unpublished(session: Session, transaction) -> None:
    # after_commit already drained a committed root; anything left was rolled back or closed
    if transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        log.debug("realtime: dropped %d staged events on rollback", len(dropped))
