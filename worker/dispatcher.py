import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from reloop.core.config import settings
from reloop.core.logging import setup_logging
from reloop.services.outbox_dispatcher import dispatch_outbox
from worker.celery_app import celery


log = logging.getLogger(__name__)

POLL_SECONDS = 2


def _enqueue(outbox_id: str, lease_id: str) -> None:
    celery.send_task("worker.tasks.process_outbox_event", args=[outbox_id, lease_id], queue="outbox")


async def _tick(Session) -> int:
    async with Session() as db:
        n = await dispatch_outbox(
            db,
            _enqueue,
            batch_size=settings.outbox_batch_size,
            lease_minutes=settings.outbox_lease_minutes,
        )
    if n:
        log.info("dispatcher: enqueued %d outbox events", n)
    return n


async def main():
    setup_logging()
    celery.connection().ensure_connection(max_retries=3)

    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    log.info("dispatcher: started")
    try:
        while True:
            try:
                await _tick(Session)
            except Exception:
                log.exception("dispatcher: tick crashed")
            await asyncio.sleep(POLL_SECONDS)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
