import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from reloop.api.error_handlers import register_error_handlers
from reloop.api.v1.router import router as v1_router
from reloop.core.config import settings
from reloop.core.logging import setup_logging
from reloop.core.telemetry import setup_telemetry
from reloop.services.rate_limit import FixedWindowLimiter
from reloop.services.realtime import RedisRelay, hub

setup_logging()
log = logging.getLogger(__name__)


def _relay_stopped(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("realtime relay stopped", exc_info=exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.view_limiter = FixedWindowLimiter(settings.redis_url, namespace="views")

    relay_task = None
    if settings.realtime_backend == "redis":
        hub.relay = RedisRelay(hub, settings.redis_url)
        relay_task = asyncio.create_task(hub.relay.run())
        relay_task.add_done_callback(_relay_stopped)
        log.info("realtime relay started")

    yield

    if relay_task is not None:
        relay_task.cancel()
        with suppress(asyncio.CancelledError):
            await relay_task
        await hub.relay.flush()
        hub.relay = None
    await app.state.view_limiter.aclose()
    if tracer_provider is not None:
        tracer_provider.shutdown()


app = FastAPI(title="Reloop Exchange API", version="0.1.0", lifespan=lifespan)

register_error_handlers(app)
tracer_provider = setup_telemetry(app) if settings.telemetry_enabled else None
app.include_router(v1_router)
