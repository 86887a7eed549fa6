"""
Producer API for scheduling jobs in the future.

Producers never talk to the scheduler loop; they only add jobs to, or
retract jobs from, the delayed queue the loop drains.
"""

import logging
import math
import time
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Union

from .delayed_queue import DelayedQueue
from .types import ScheduleValidationError, build_job, to_timestamp, validate_job_fields

logger = logging.getLogger(__name__)


class DelayedScheduler:
    """
    Schedules jobs to be pushed onto a work queue at a later time.

    Args:
        delayed_queue: Store holding the scheduled jobs
        clock: Source of the current epoch time
    """

    def __init__(self, delayed_queue: DelayedQueue, clock: Callable[[], float] = time.time):
        self.delayed_queue = delayed_queue
        self._clock = clock

    async def schedule_at(
        self,
        at: Union[int, datetime],
        queue: str,
        job_class: str,
        args: Optional[Sequence[Any]] = None
    ) -> int:
        """
        Schedule a job to be enqueued at a specific time.

        Args:
            at: Epoch seconds or datetime at which the job becomes due
            queue: Work queue the job is pushed onto
            job_class: Job type name
            args: Job arguments

        Returns:
            The due timestamp in epoch seconds

        Raises:
            ScheduleValidationError: If the job is malformed; nothing is stored
        """
        job = build_job(at, queue, job_class, args)
        await self.delayed_queue.schedule(job)
        logger.debug(f"Scheduled {job_class} in {queue} at {job.due_at}")
        return job.due_at

    async def schedule_in(
        self,
        delay: float,
        queue: str,
        job_class: str,
        args: Optional[Sequence[Any]] = None
    ) -> int:
        """
        Schedule a job to be enqueued after a number of seconds.

        Args:
            delay: Seconds from now; fractions are allowed

        Returns:
            The due timestamp in epoch seconds
        """
        if isinstance(delay, bool) or not isinstance(delay, (int, float)):
            raise ScheduleValidationError(f"Delay must be a number, got {type(delay).__name__}")
        if not math.isfinite(delay):
            raise ScheduleValidationError(f"Delay must be finite, got {delay}")
        return await self.schedule_at(int(self._clock() + delay), queue, job_class, args)

    async def remove_matching(
        self,
        job_class: str,
        args: Sequence[Any],
        queue: str
    ) -> int:
        """
        Remove every not yet due job with this class, arguments and queue.

        Returns:
            Number of jobs removed; 0 when nothing matched

        Raises:
            ScheduleValidationError: If the fields are malformed
        """
        args = list(validate_job_fields(queue, job_class, args))

        def predicate(job):
            return job.matches(queue, job_class, args)

        removed = await self.delayed_queue.remove_all_matching(predicate)
        logger.debug(f"Removed {removed} delayed {job_class} jobs from {queue}")
        return removed

    async def remove_from_timestamp(
        self,
        at: Union[int, datetime],
        queue: str,
        job_class: str,
        args: Optional[Sequence[Any]] = None
    ) -> int:
        """Remove matching jobs scheduled at exactly one timestamp."""
        job = build_job(at, queue, job_class, args)
        return await self.delayed_queue.remove(job.due_at, job)

    async def size(self) -> int:
        """Number of jobs waiting in the delayed queue."""
        return await self.delayed_queue.size()

    async def timestamp_size(self, at: Union[int, datetime]) -> int:
        return await self.delayed_queue.timestamp_size(to_timestamp(at))

    async def next_due_at(self) -> Optional[int]:
        timestamps = await self.delayed_queue.timestamps()
        return timestamps[0] if timestamps else None
