import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from reloop.core.config import settings
from reloop.core.errors import ServiceTimeout

T = TypeVar("T")


async def within_deadline(aw: Awaitable[T], seconds: float | None = None) -> T:
    """
    Bound a service call. A timeout means "unknown outcome": the caller may
    retry, and the business-key guards make the retry safe.
    """
    try:
        return await asyncio.wait_for(aw, timeout=seconds or settings.request_timeout_seconds)
    except asyncio.TimeoutError as e:
        raise ServiceTimeout() from e
