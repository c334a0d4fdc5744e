"""Redis-backed expiring Bloom filters.

A read report remembers for how long an item may be cached. A write report
for an item that may still be cached adds the item to a counting Bloom filter
until that time has passed, after which a background task removes it again.
Once every cached copy has expired the filter is empty.

Two strategies differ only in where the pending removals are queued: in a
Redis sorted set shared by every process, or in a heap local to this process.
"""

from __future__ import annotations

import asyncio
import hashlib
import heapq
import itertools
import logging
import time
import uuid
from abc import abstractmethod
from typing import Optional

from common.errors import HarnessError
from common.models.scenario import FilterQueue
from common.store.redis_client import RedisClient
from harness.filters.base import FilterConfig, FilterHandle

logger = logging.getLogger(__name__)

# Decrement one counter, clearing its bit once no item holds it. Counters
# that are already gone are left alone.
RELEASE_FUNCTION = """
local function release(counts, bits, pos)
    local count = tonumber(redis.call('HGET', counts, pos))
    if not count then
        return 0
    end
    if count > 1 then
        redis.call('HINCRBY', counts, pos, -1)
        return 0
    end
    redis.call('HDEL', counts, pos)
    redis.call('SETBIT', bits, pos, 0)
    return 1
end
"""

# KEYS[1] counters hash, KEYS[2] bitmap; ARGV bit positions
ADD_SCRIPT = """
for _, pos in ipairs(ARGV) do
    redis.call('HINCRBY', KEYS[1], pos, 1)
    redis.call('SETBIT', KEYS[2], pos, 1)
end
return #ARGV
"""

REMOVE_SCRIPT = RELEASE_FUNCTION + """
local cleared = 0
for _, pos in ipairs(ARGV) do
    cleared = cleared + release(KEYS[1], KEYS[2], pos)
end
return cleared
"""

# KEYS[1] counters hash, KEYS[2] bitmap, KEYS[3] queue;
# ARGV[1] expiry, ARGV[2] queue member, ARGV[3..] bit positions
QUEUE_ADD_SCRIPT = """
redis.call('ZADD', KEYS[3], ARGV[1], ARGV[2])
for i = 3, #ARGV do
    redis.call('HINCRBY', KEYS[1], ARGV[i], 1)
    redis.call('SETBIT', KEYS[2], ARGV[i], 1)
end
return #ARGV - 2
"""

# KEYS[1] queue, KEYS[2] counters hash, KEYS[3] bitmap; ARGV[1] now, ARGV[2] batch
QUEUE_EXPIRE_SCRIPT = RELEASE_FUNCTION + """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, member in ipairs(due) do
    redis.call('ZREM', KEYS[1], member)
    local positions = string.match(member, '|([%d,]*)$')
    for pos in string.gmatch(positions or '', '%d+') do
        release(KEYS[2], KEYS[3], pos)
    end
end
return #due
"""

EXPIRE_BATCH = 500


def now_ms() -> float:
    return time.time() * 1000


def decode_bits(raw: Optional[bytes]) -> frozenset[int]:
    """Positions of the set bits in a Redis bitmap (bit 0 is the first byte's MSB)."""
    if not raw:
        return frozenset()
    value = int.from_bytes(raw, "big")
    if not value:
        return frozenset()
    last = len(raw) * 8 - 1
    positions = []
    while value:
        lowest = value & -value
        positions.append(last - (lowest.bit_length() - 1))
        value ^= lowest
    return frozenset(positions)


class ExpiringFilter(FilterHandle):
    """Counting Bloom filter whose entries expire with the reads that cached them."""

    def __init__(self, config: FilterConfig, client: RedisClient):
        super().__init__(config)
        self.client = client
        self._expiry_task: Optional[asyncio.Task] = None

    @property
    def bits_key(self) -> str:
        return f"{self.name}:bits"

    @property
    def counts_key(self) -> str:
        return f"{self.name}:counts"

    @property
    def ttl_key(self) -> str:
        return f"{self.name}:ttl"

    def positions(self, item: str) -> list[int]:
        """Bit positions of an item by double hashing."""
        digest = hashlib.md5(item.encode("utf-8")).digest()
        h1 = int.from_bytes(digest[:8], "little")
        h2 = int.from_bytes(digest[8:], "little") | 1
        size = self.config.size
        return [(h1 + i * h2) % size for i in range(self.config.hashes)]

    async def start(self) -> None:
        if self._expiry_task is None or self._expiry_task.done():
            self._expiry_task = asyncio.create_task(
                self._expiry_loop(), name=f"expiry:{self.name}"
            )

    async def close(self) -> None:
        """Stop the expiry task."""
        if self._expiry_task:
            self._expiry_task.cancel()
            try:
                await self._expiry_task
            except asyncio.CancelledError:
                pass
            self._expiry_task = None

    async def clear(self) -> None:
        await self.client.delete(self.bits_key, self.counts_key, self.ttl_key)
        await self._clear_queue()

    async def report_read(self, item: str, ttl_ms: int) -> None:
        await self.client.zadd_gt(self.ttl_key, item, now_ms() + ttl_ms)

    async def report_write(self, item: str) -> None:
        expires_at = await self.client.zscore(self.ttl_key, item)
        if expires_at is None or expires_at <= now_ms():
            # Nobody may still hold a cached copy
            return
        await self._add(item, expires_at)

    async def membership_snapshot(self) -> frozenset[int]:
        return decode_bits(await self.client.get(self.bits_key))

    async def expire_due(self, now: Optional[float] = None) -> int:
        """Remove every item whose cached copies have expired."""
        now = now_ms() if now is None else now
        expired = await self._expire(now)
        await self.client.zremrangebyscore(self.ttl_key, "-inf", now)
        return expired

    async def _expiry_loop(self) -> None:
        while True:
            try:
                expired = await self.expire_due()
                if expired:
                    logger.debug(f"Expired {expired} items from {self.name}")
            except HarnessError as e:
                logger.warning(f"Expiry pass failed for {self.name}: {e}")
            await asyncio.sleep(self.config.expiry_poll_interval_s)

    @abstractmethod
    async def _add(self, item: str, expires_at: float) -> None:
        """Set the item's bits and queue their release at ``expires_at``."""

    @abstractmethod
    async def _expire(self, now: float) -> int:
        """Release every queued item due at ``now``."""

    @abstractmethod
    async def _clear_queue(self) -> None:
        """Drop every pending removal."""


class RedisQueueFilter(ExpiringFilter):
    """Removal queue kept in a Redis sorted set.

    Each queue member carries the item's bit positions, so adding an item and
    releasing it again are each a single script run.
    """

    @property
    def queue_key(self) -> str:
        return f"{self.name}:queue"

    def queue_member(self, item: str, positions: list[int]) -> str:
        return f"{item}|{uuid.uuid4().hex[:12]}|{','.join(map(str, positions))}"

    async def _add(self, item: str, expires_at: float) -> None:
        positions = self.positions(item)
        await self.client.run_script(
            QUEUE_ADD_SCRIPT,
            [self.counts_key, self.bits_key, self.queue_key],
            [expires_at, self.queue_member(item, positions), *positions],
        )

    async def _expire(self, now: float) -> int:
        expired = 0
        while True:
            batch = await self.client.run_script(
                QUEUE_EXPIRE_SCRIPT,
                [self.queue_key, self.counts_key, self.bits_key],
                [now, EXPIRE_BATCH],
            )
            expired += batch
            if batch < EXPIRE_BATCH:
                return expired

    async def _clear_queue(self) -> None:
        await self.client.delete(self.queue_key)


class MemoryQueueFilter(ExpiringFilter):
    """Removal queue kept in a heap local to this process."""

    def __init__(self, config: FilterConfig, client: RedisClient):
        super().__init__(config, client)
        self._queue: list[tuple[float, int, str]] = []
        self._sequence = itertools.count()

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def _add(self, item: str, expires_at: float) -> None:
        # Queued before the add, so bits set by a failed call are still released
        heapq.heappush(self._queue, (expires_at, next(self._sequence), item))
        await self.client.run_script(
            ADD_SCRIPT, [self.counts_key, self.bits_key], self.positions(item)
        )

    async def _expire(self, now: float) -> int:
        expired = 0
        while self._queue and self._queue[0][0] <= now:
            entry = self._queue[0]
            await self.client.run_script(
                REMOVE_SCRIPT, [self.counts_key, self.bits_key], self.positions(entry[2])
            )
            self._discard(entry)
            expired += 1
        return expired

    def _discard(self, entry: tuple[float, int, str]) -> None:
        if self._queue and self._queue[0] is entry:
            heapq.heappop(self._queue)
        else:
            self._queue.remove(entry)
            heapq.heapify(self._queue)

    async def _clear_queue(self) -> None:
        self._queue.clear()


FILTER_TYPES: dict[FilterQueue, type[ExpiringFilter]] = {
    FilterQueue.REDIS: RedisQueueFilter,
    FilterQueue.MEMORY: MemoryQueueFilter,
}


def create_filter(
    queue: FilterQueue | str,
    config: FilterConfig,
    client: RedisClient,
) -> ExpiringFilter:
    """Build the filter strategy selected by ``queue``."""
    return FILTER_TYPES[FilterQueue(queue)](config, client)
