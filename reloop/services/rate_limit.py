from __future__ import annotations

import time

import redis.asyncio as redis


class FixedWindowLimiter:
    """
    At most `limit` hits per key per window, counted in Redis.
    Used to count anonymous listing views once per IP per window.
    """

    def __init__(self, redis_url: str, namespace: str = "rl"):
        self.r = redis.from_url(redis_url, decode_responses=True)
        self.namespace = namespace

    def _key(self, key: str, window_seconds: int) -> str:
        return f"{self.namespace}:{key}:{int(time.time()) // window_seconds}"

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> bool:
        rkey = self._key(key, window_seconds)
        async with self.r.pipeline(transaction=True) as pipe:
            pipe.incr(rkey)
            # only the first hit in a window sets the expiry
            pipe.expire(rkey, window_seconds, nx=True)
            count, _ = await pipe.execute()
        return int(count) <= limit

    async def aclose(self) -> None:
        await self.r.aclose()
