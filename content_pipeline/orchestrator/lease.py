"""
Per-run scheduler pass leases.

A pass over a run holds the run's lease for its whole duration so two
triggers firing at once cannot process the same run concurrently. Leases
expire after a TTL so a crashed pass never wedges a run.
"""

import logging
from typing import Optional, Protocol
from uuid import UUID

import redis.asyncio as redis

from content_pipeline.config.settings import LeaseBackend, Settings
from content_pipeline.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


# Take the lease if free, or refresh it if the caller already owns it.
# Returns 1 on success, 0 if another owner holds it.
LEASE_ACQUIRE_SCRIPT = """
local key = KEYS[1]
local owner = ARGV[1]
local ttl_ms = tonumber(ARGV[2])

local current = redis.call("GET", key)
if current == owner then
    redis.call("PEXPIRE", key, ttl_ms)
    return 1
end

if redis.call("SET", key, owner, "NX", "PX", ttl_ms) then
    return 1
end
return 0
"""

# Delete the lease only if the caller still owns it.
LEASE_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RunLease(Protocol):
    """Mutual exclusion for scheduler passes over one run."""

    async def acquire(self, run_id: UUID, owner: str) -> bool:
        ...

    async def release(self, run_id: UUID, owner: str) -> None:
        ...


class StoreRunLease:
    """Lease held in the run row's ``locked_by``/``locked_until`` columns."""

    def __init__(self, store: WorkflowStore, ttl: float):
        self._store = store
        self._ttl = ttl

    async def acquire(self, run_id: UUID, owner: str) -> bool:
        return await self._store.acquire_run_lease(run_id, owner, self._ttl)

    async def release(self, run_id: UUID, owner: str) -> None:
        await self._store.release_run_lease(run_id, owner)


class RedisRunLease:
    """Lease held in a Redis key with a millisecond TTL."""

    KEY_PREFIX = "content_pipeline:lease"

    def __init__(self, redis_client: redis.Redis, ttl: float):
        self.redis = redis_client
        self._ttl_ms = int(ttl * 1000)
        self._acquire_script = self.redis.register_script(LEASE_ACQUIRE_SCRIPT)
        self._release_script = self.redis.register_script(LEASE_RELEASE_SCRIPT)

    def _key(self, run_id: UUID) -> str:
        return f"{self.KEY_PREFIX}:{run_id}"

    async def acquire(self, run_id: UUID, owner: str) -> bool:
        result = await self._acquire_script(
            keys=[self._key(run_id)],
            args=[owner, self._ttl_ms],
        )
        return int(result) == 1

    async def release(self, run_id: UUID, owner: str) -> None:
        released = await self._release_script(keys=[self._key(run_id)], args=[owner])
        if not released:
            logger.warning(f"Lease for run {run_id} was no longer held by {owner}")


def build_lease(
    settings: Settings,
    store: WorkflowStore,
    redis_client: Optional[redis.Redis] = None,
) -> RunLease:
    """
    Build the lease backend selected by ``SCHEDULER_LEASE_BACKEND``.

    Raises:
        ValueError: If the redis backend is selected without a client
    """
    ttl = settings.scheduler.lease_ttl

    if settings.scheduler.lease_backend == LeaseBackend.REDIS:
        if redis_client is None:
            raise ValueError("Redis lease backend requires a Redis client")
        return RedisRunLease(redis_client, ttl)

    return StoreRunLease(store, ttl)
