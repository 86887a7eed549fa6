"""
Scheduler loop that moves due jobs from the delayed queue to the work queue.

Every iteration the loop polls its control state, drains every bucket
that is due and then sleeps for the configured interval. The control
state is re-polled after each dispatched job, so pausing or shutting
down takes effect between jobs and never mid-dispatch. Jobs left in a
bucket when draining stops stay in the delayed queue.

Delivery is at-most-once: a job is removed from the delayed queue before
it is handed off, and a failed hand-off is logged and dropped.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .control import WorkerControl
from .delayed_queue import DelayedQueue, RedisDelayedQueue
from .hooks import DispatchHooks
from .types import ControlState, DelayedJob, HookFailure, WorkerSettings
from .work_queue import HttpWorkQueue, RedisWorkQueue, WorkQueue

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class SchedulerLoop:
    """
    Drains a delayed queue into a work queue as jobs become due.

    Attributes:
        interval: Seconds to sleep between checks for due jobs
        status: What the loop is currently doing, for monitoring
    """

    def __init__(
        self,
        delayed_queue: DelayedQueue,
        work_queue: WorkQueue,
        control: Optional[WorkerControl] = None,
        hooks: Optional[DispatchHooks] = None,
        interval: float = 5.0,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None
    ):
        self._queue = delayed_queue
        self._work_queue = work_queue
        self.control = control or WorkerControl()
        self.hooks = hooks or DispatchHooks()
        self.interval = interval
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self.status = None

    def _set_status(self, status: str) -> None:
        if status != self.status:
            self.status = status
            self._logger.debug(f"Scheduler status: {status}")

    async def run(self, interval: Optional[float] = None) -> None:
        """
        Main scheduling loop.

        Runs until the control state becomes SHUTTING_DOWN. Every
        ``interval`` seconds the delayed queue is checked for jobs that
        should be pushed to the work queue.

        Args:
            interval: Overrides the configured interval
        """
        if interval is not None:
            self.interval = interval

        self._set_status('Starting')
        self._logger.info(f"Starting delayed job scheduler (interval {self.interval}s)")

        while True:
            state = self.control.poll()
            if state is ControlState.SHUTTING_DOWN:
                break

            if state is ControlState.PAUSED:
                self._set_status('Paused')
            else:
                try:
                    await self.drain_due()
                except Exception as e:
                    self._logger.error(f"Error handling delayed items: {e}", exc_info=True)
                # Stopped mid-drain: re-evaluate control before sleeping
                if self.control.state is not ControlState.RUNNING:
                    continue

            self._set_status('Sleeping')
            await self.control.wait(self.interval)

        self._set_status('Stopped')
        self._logger.info("Scheduler stopped")

    async def drain_due(self, now: Optional[int] = None) -> int:
        """
        Dispatch every job that is due.

        Buckets are drained earliest first. After a bucket is exhausted the
        delayed queue is queried again, since jobs may have been added at
        or before a timestamp already handled.

        Args:
            now: Latest timestamp considered due; defaults to the clock

        Returns:
            Number of jobs handed to the work queue
        """
        dispatched = 0
        while self.control.poll() is ControlState.RUNNING:
            threshold = int(self._clock()) if now is None else now
            timestamp = await self._queue.peek_earliest_due(threshold)
            if timestamp is None:
                break
            self._set_status('Processing Delayed Items')
            dispatched += await self.drain_timestamp(timestamp)
        return dispatched

    async def drain_timestamp(self, timestamp: int) -> int:
        """
        Claim and dispatch the jobs of one bucket until it is empty.

        Stops early, leaving the rest of the bucket in place, as soon as
        the worker is paused or shutting down.

        Args:
            timestamp: Bucket to drain

        Returns:
            Number of jobs handed to the work queue
        """
        dispatched = 0
        while True:
            job = await self._queue.claim_one(timestamp)
            if job is None:
                break
            if await self.dispatch(job) is not None:
                dispatched += 1
            if self.control.poll() is not ControlState.RUNNING:
                break
        return dispatched

    async def dispatch(self, job: DelayedJob) -> Optional[str]:
        """
        Hand one claimed job to the work queue.

        Hook and enqueue failures are logged and the job is dropped; it
        has already left the delayed queue.

        Args:
            job: The claimed job

        Returns:
            The work queue job id, or None if the job was dropped
        """
        self._logger.info(f"Queueing {job.job_class} in {job.queue} [delayed]")

        try:
            self.hooks.notify(job)
        except HookFailure as e:
            self._logger.error(f"Skipping delayed job: {e}", exc_info=True)
            return None

        try:
            return await self._work_queue.enqueue(
                job.queue, job.job_class, list(job.args), track_status=True
            )
        except Exception as e:
            self._logger.error(
                f"Failed to enqueue {job.job_class} in {job.queue}, job dropped: {e}",
                exc_info=True
            )
            return None


async def serve(settings: WorkerSettings, hooks: Optional[DispatchHooks] = None) -> None:
    """
    Run a Redis backed scheduler worker until it is told to shut down.

    Host signals are installed on the running event loop: TERM, INT,
    QUIT and USR1 shut down gracefully, USR2 pauses and CONT resumes.

    Args:
        settings: Worker configuration
        hooks: Pre-dispatch hooks to run for every job
    """
    delayed_queue = RedisDelayedQueue.from_url(settings.redis_url, namespace=settings.namespace)
    if settings.work_queue_url:
        work_queue: WorkQueue = HttpWorkQueue(settings.work_queue_url)
    else:
        work_queue = RedisWorkQueue(delayed_queue.redis, namespace=settings.namespace)

    control = WorkerControl()
    loop = asyncio.get_running_loop()
    control.install_signal_handlers(loop)
    try:
        scheduler = SchedulerLoop(
            delayed_queue, work_queue, control=control, hooks=hooks, interval=settings.interval
        )
        await scheduler.run()
    finally:
        control.remove_signal_handlers(loop)
        await work_queue.close()
        await delayed_queue.close()


def run_worker(settings: Optional[WorkerSettings] = None, hooks: Optional[DispatchHooks] = None):
    """Run the scheduler worker"""
    settings = settings or WorkerSettings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    asyncio.run(serve(settings, hooks))
