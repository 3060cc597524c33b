import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import reloop.models  # noqa: F401  # ensures Models are registered
from reloop.core.config import settings
from reloop.services import outbox_dispatcher
from reloop.services.listings import expire_stale
from reloop.services.realtime import RedisRelay, hub
from worker.celery_app import celery


log = logging.getLogger(__name__)


async def _run(fn):
    """Fresh engine per task run; asyncio.run gives every task its own loop."""
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    if settings.realtime_backend == "redis":
        hub.relay = RedisRelay(hub, settings.redis_url)
    try:
        async with Session() as db:
            return await fn(db)
    finally:
        if hub.relay is not None:
            # staged pushes are forwarded on commit; let them reach Redis
            await hub.relay.flush()
            await hub.relay.r.aclose()
            hub.relay = None
        await engine.dispose()


async def _process_outbox_event(outbox_id: str, lease_id: str) -> bool:
    return await _run(lambda db: outbox_dispatcher.process_event(db, outbox_id, lease_id))


async def _expire_listings() -> int:
    async def go(db):
        n = await expire_stale(db, max_age_days=settings.listing_expiry_days)
        await db.commit()
        return n

    return await _run(go)


@celery.task(name="worker.tasks.process_outbox_event")
def process_outbox_event(outbox_id: str, lease_id: str) -> bool:
    done = asyncio.run(_process_outbox_event(outbox_id, lease_id))
    if not done:
        log.info("outbox: %s skipped, lease lost or already handled", outbox_id)
    return done


@celery.task(name="worker.tasks.expire_listings")
def expire_listings() -> int:
    n = asyncio.run(_expire_listings())
    log.info("expired %d stale listings", n)
    return n
