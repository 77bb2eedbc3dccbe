"""Redis-backed delivery queue.

Three keys per prefix:

- ``<prefix>_queue`` — pending list. Ids are ``LPUSH``ed and ``RPOP``ed, so the
  list is FIFO with the head on the right.
- ``<prefix>_processing`` — in-flight set of ids claimed by a worker.
- ``<prefix>_scheduled`` — sorted set of retries parked until their due time
  (score = due epoch seconds).

Claiming, promotion of due retries and orphan recovery run as Lua scripts so
they stay atomic when several workers share the queue or the connection drops
mid-operation.
"""

import logging
import time
from datetime import datetime
from functools import wraps
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from sbtcpay_webhooks.common.exceptions import QueueUnavailableError

logger = logging.getLogger(__name__)

# KEYS[1] pending list, KEYS[2] in-flight set.
# A copy of an id that is already in flight is dropped, not claimed twice.
_DEQUEUE_LUA = """
while true do
    local id = redis.call('RPOP', KEYS[1])
    if not id then
        return false
    end
    if redis.call('SADD', KEYS[2], id) == 1 then
        return id
    end
end
"""

# KEYS[1] scheduled set, KEYS[2] pending list, ARGV[1] now (epoch seconds)
_PROMOTE_DUE_LUA = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    redis.call('LPUSH', KEYS[2], id)
end
return #ids
"""

_REQUEUE_ORPHANS_LUA = """
local ids = redis.call('SMEMBERS', KEYS[2])
for _, id in ipairs(ids) do
    redis.call('LPUSH', KEYS[1], id)
end
redis.call('DEL', KEYS[2])
return #ids
"""


def _unavailable_on_connection_error(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise QueueUnavailableError(f"Queue store unreachable: {exc}") from exc
    return wrapper


class DeliveryQueue:
    """FIFO work queue of delivery ids with an in-flight set for crash recovery."""

    def __init__(self, redis: Redis, prefix: str = "webhook_deliveries"):
        self.redis = redis
        self.queue_key = f"{prefix}_queue"
        self.processing_key = f"{prefix}_processing"
        self.scheduled_key = f"{prefix}_scheduled"
        self._dequeue_script = redis.register_script(_DEQUEUE_LUA)
        self._promote_script = redis.register_script(_PROMOTE_DUE_LUA)
        self._requeue_script = redis.register_script(_REQUEUE_ORPHANS_LUA)

    @staticmethod
    def _decode(value) -> Optional[str]:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    @_unavailable_on_connection_error
    async def enqueue(self, delivery_id: str, not_before: datetime | None = None) -> None:
        """Append to the tail, or park until ``not_before`` if that is in the future."""
        if not_before is not None and not_before.timestamp() > time.time():
            await self.redis.zadd(self.scheduled_key, {delivery_id: not_before.timestamp()})
            return
        await self.redis.lpush(self.queue_key, delivery_id)

    @_unavailable_on_connection_error
    async def promote_due(self, now: float | None = None) -> int:
        """Move scheduled ids whose due time has passed onto the pending list."""
        now = time.time() if now is None else now
        return int(await self._promote_script(
            keys=[self.scheduled_key, self.queue_key], args=[now],
        ))

    @_unavailable_on_connection_error
    async def dequeue(self) -> Optional[str]:
        """Pop the head and mark it in flight, atomically."""
        await self.promote_due()
        result = await self._dequeue_script(keys=[self.queue_key, self.processing_key])
        return self._decode(result)

    @_unavailable_on_connection_error
    async def complete(self, delivery_id: str) -> None:
        await self.redis.srem(self.processing_key, delivery_id)

    @_unavailable_on_connection_error
    async def requeue_orphans(self) -> int:
        """Return every in-flight id to the pending list. Run once at worker startup."""
        count = int(await self._requeue_script(keys=[self.queue_key, self.processing_key]))
        if count:
            logger.warning("Requeued %d in-flight deliveries left by a previous worker", count)
        return count

    @_unavailable_on_connection_error
    async def depth(self) -> int:
        return await self.redis.llen(self.queue_key)

    @_unavailable_on_connection_error
    async def in_flight_count(self) -> int:
        return await self.redis.scard(self.processing_key)

    @_unavailable_on_connection_error
    async def scheduled_count(self) -> int:
        return await self.redis.zcard(self.scheduled_key)

    async def stats(self) -> dict[str, int]:
        return {
            "queue_length": await self.depth(),
            "processing_count": await self.in_flight_count(),
            "scheduled_count": await self.scheduled_count(),
        }
