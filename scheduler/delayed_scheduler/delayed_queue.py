"""
Time-ordered backlog of delayed jobs.

A delayed queue maps a due timestamp to a bucket of jobs sharing that
timestamp. Buckets are never left empty, the earliest timestamp is
found without scanning items, and claiming a job pops exactly one job
from one bucket in a single atomic step, so several workers can drain
the same backlog without delivering a job twice.

Two implementations are provided:
- InMemoryDelayedQueue for a single process (and tests)
- RedisDelayedQueue, sharing the layout used by resque-scheduler
"""

import bisect
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from .types import DelayedJob

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

JobPredicate = Callable[[DelayedJob], bool]


class DelayedQueue(ABC):
    """Storage contract the scheduler loop and producers rely on."""

    @abstractmethod
    async def schedule(self, job: DelayedJob) -> None:
        """Add a job to the bucket for job.due_at, creating it if needed."""

    @abstractmethod
    async def peek_earliest_due(self, threshold: int) -> Optional[int]:
        """
        Find the earliest bucket that is due.

        Args:
            threshold: Latest timestamp considered due

        Returns:
            The smallest bucket timestamp <= threshold, or None
        """

    @abstractmethod
    async def claim_one(self, timestamp: int) -> Optional[DelayedJob]:
        """
        Atomically take one job from the bucket at exactly ``timestamp``.

        The bucket is deleted once it becomes empty. Returns None when no
        bucket exists at that timestamp, which happens routinely when a
        concurrent worker drained it first.
        """

    @abstractmethod
    async def remove(self, timestamp: int, job: DelayedJob) -> int:
        """Remove every copy of ``job`` from one bucket; returns the count removed."""

    @abstractmethod
    async def remove_all_matching(self, predicate: JobPredicate) -> int:
        """Remove every job, in any bucket, for which ``predicate`` is true."""

    @abstractmethod
    async def size(self) -> int:
        """Total number of delayed jobs."""

    @abstractmethod
    async def timestamp_size(self, timestamp: int) -> int:
        """Number of jobs in the bucket at ``timestamp``."""

    @abstractmethod
    async def timestamps(self) -> List[int]:
        """All bucket timestamps, ascending."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryDelayedQueue(DelayedQueue):
    """
    Process-local delayed queue.

    Buckets live in a dict keyed by timestamp while a sorted list of the
    same timestamps gives the earliest one in constant time. A threading
    lock makes each operation atomic across asyncio tasks and threads.
    """

    def __init__(self):
        self._buckets: Dict[int, List[DelayedJob]] = {}
        self._timestamps: List[int] = []
        self._lock = threading.Lock()

    def _drop_bucket(self, timestamp: int) -> None:
        del self._buckets[timestamp]
        index = bisect.bisect_left(self._timestamps, timestamp)
        del self._timestamps[index]

    async def schedule(self, job: DelayedJob) -> None:
        with self._lock:
            bucket = self._buckets.get(job.due_at)
            if bucket is None:
                bucket = self._buckets[job.due_at] = []
                bisect.insort(self._timestamps, job.due_at)
            bucket.append(job)

    async def peek_earliest_due(self, threshold: int) -> Optional[int]:
        with self._lock:
            if self._timestamps and self._timestamps[0] <= threshold:
                return self._timestamps[0]
            return None

    async def claim_one(self, timestamp: int) -> Optional[DelayedJob]:
        with self._lock:
            bucket = self._buckets.get(timestamp)
            if not bucket:
                return None
            job = bucket.pop(0)
            if not bucket:
                self._drop_bucket(timestamp)
            return job

    async def remove(self, timestamp: int, job: DelayedJob) -> int:
        with self._lock:
            bucket = self._buckets.get(timestamp)
            if not bucket:
                return 0
            encoded = job.encode()
            kept = [item for item in bucket if item.encode() != encoded]
            removed = len(bucket) - len(kept)
            if kept:
                self._buckets[timestamp] = kept
            else:
                self._drop_bucket(timestamp)
            return removed

    async def remove_all_matching(self, predicate: JobPredicate) -> int:
        removed = 0
        with self._lock:
            for timestamp in list(self._timestamps):
                bucket = self._buckets[timestamp]
                kept = [job for job in bucket if not predicate(job)]
                removed += len(bucket) - len(kept)
                if kept:
                    self._buckets[timestamp] = kept
                else:
                    self._drop_bucket(timestamp)
        return removed

    async def size(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._buckets.values())

    async def timestamp_size(self, timestamp: int) -> int:
        with self._lock:
            return len(self._buckets.get(timestamp, ()))

    async def timestamps(self) -> List[int]:
        with self._lock:
            return list(self._timestamps)


# KEYS: [bucket_key, schedule_key]  ARGV: [timestamp]
CLAIM_SCRIPT = """
local item = redis.call('LPOP', KEYS[1])
if redis.call('LLEN', KEYS[1]) == 0 then
    redis.call('DEL', KEYS[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
end
return item
"""

# KEYS: [bucket_key, schedule_key]  ARGV: [timestamp, encoded_job]
REMOVE_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], 0, ARGV[2])
if redis.call('LLEN', KEYS[1]) == 0 then
    redis.call('DEL', KEYS[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
end
return removed
"""


class RedisDelayedQueue(DelayedQueue):
    """
    Redis backed delayed queue shared by any number of worker processes.

    Layout (compatible with resque-scheduler):
    - ``<namespace>:delayed_queue_schedule``: sorted set of bucket
      timestamps, scored by the timestamp itself
    - ``<namespace>:delayed:<timestamp>``: list of encoded jobs

    Claims and removals run as Lua scripts so popping a job, deleting the
    emptied list and dropping its timestamp from the schedule are one
    atomic step for every client.
    """

    def __init__(self, redis: "Redis", namespace: str = "resque"):
        """
        Initialize RedisDelayedQueue.

        Args:
            redis: An initialized redis.asyncio.Redis client
            namespace: Key prefix shared with the work queue consumers
        """
        self._redis = redis
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "resque") -> "RedisDelayedQueue":
        from redis.asyncio import Redis

        return cls(Redis.from_url(url), namespace=namespace)

    @property
    def redis(self) -> "Redis":
        return self._redis

    @property
    def schedule_key(self) -> str:
        return f"{self._namespace}:delayed_queue_schedule"

    def bucket_key(self, timestamp: int) -> str:
        return f"{self._namespace}:delayed:{timestamp}"

    async def schedule(self, job: DelayedJob) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(self.bucket_key(job.due_at), job.encode())
            pipe.zadd(self.schedule_key, {str(job.due_at): job.due_at})
            await pipe.execute()

    async def peek_earliest_due(self, threshold: int) -> Optional[int]:
        found = await self._redis.zrangebyscore(
            self.schedule_key, '-inf', threshold, start=0, num=1
        )
        if not found:
            return None
        return int(found[0])

    async def claim_one(self, timestamp: int) -> Optional[DelayedJob]:
        raw = await self._redis.eval(
            CLAIM_SCRIPT, 2, self.bucket_key(timestamp), self.schedule_key, str(timestamp)
        )
        if raw is None:
            return None
        return DelayedJob.decode(raw, timestamp)

    async def _remove_raw(self, timestamp: int, raw: Union[str, bytes]) -> int:
        removed = await self._redis.eval(
            REMOVE_SCRIPT, 2, self.bucket_key(timestamp), self.schedule_key,
            str(timestamp), raw
        )
        return int(removed)

    async def remove(self, timestamp: int, job: DelayedJob) -> int:
        return await self._remove_raw(timestamp, job.encode())

    async def remove_all_matching(self, predicate: JobPredicate) -> int:
        removed = 0
        for timestamp in await self.timestamps():
            # Match on the stored bytes; other producers may encode differently
            for raw in await self._redis.lrange(self.bucket_key(timestamp), 0, -1):
                if predicate(DelayedJob.decode(raw, timestamp)):
                    removed += await self._remove_raw(timestamp, raw)
        if removed:
            logger.debug(f"Removed {removed} delayed jobs from {self._namespace}")
        return removed

    async def size(self) -> int:
        total = 0
        for timestamp in await self.timestamps():
            total += await self.timestamp_size(timestamp)
        return total

    async def timestamp_size(self, timestamp: int) -> int:
        return int(await self._redis.llen(self.bucket_key(timestamp)))

    async def timestamps(self) -> List[int]:
        return [int(ts) for ts in await self._redis.zrange(self.schedule_key, 0, -1)]

    async def close(self) -> None:
        await self._redis.aclose()
