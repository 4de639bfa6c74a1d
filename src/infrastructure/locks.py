"""
Redis-based distributed lock.

Guards the reservation sweeper: with several API processes running, only
the one holding ``lock:reservation_sweeper`` releases stale holds and
re-attaches orphaned pollers in a given cycle.

Acquire is ``SET NX PX``.  Release and extend are Lua scripts that act only
while the stored token is still ours, so a worker whose lock expired can
never delete or prolong a lock another worker has since taken.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl_ms = int(ttl_seconds * 1000)
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try once.  Returns True if the lock is now ours."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, px=self.ttl_ms)
        )

    async def extend(self) -> bool:
        """Restart the TTL.  False means the lock was lost meanwhile."""
        return bool(
            await self.redis.eval(_EXTEND_SCRIPT, 1, self.key, self.token, self.ttl_ms)
        )

    async def release(self) -> None:
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)

    async def __aenter__(self):
        if not await self.acquire():
            raise RuntimeError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
