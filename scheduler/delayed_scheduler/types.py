"""
Data models for the delayed job scheduler.

This module defines the core data structures used in delayed scheduling:
- Delayed jobs waiting for their due time
- Control states and control signals of a scheduler worker
- Worker settings
- Errors raised by the scheduler
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Union


class DelayedSchedulerError(Exception):
    """Base class for all delayed scheduler errors."""


class ScheduleValidationError(DelayedSchedulerError, ValueError):
    """Raised when a producer submits a malformed delayed job."""


class HookFailure(DelayedSchedulerError):
    """
    Raised when a pre-dispatch hook fails for a claimed job.

    Attributes:
        job: The job whose dispatch was aborted
        hook: The hook that raised
    """

    def __init__(self, job: "DelayedJob", hook: Any, cause: BaseException):
        self.job = job
        self.hook = hook
        name = getattr(hook, '__name__', repr(hook))
        super().__init__(f"Hook {name} failed for {job.job_class} in {job.queue}: {cause}")


class ControlState(Enum):
    """Lifecycle state of a scheduler worker."""
    RUNNING = "running"
    PAUSED = "paused"
    SHUTTING_DOWN = "shutting_down"


class ControlSignal(Enum):
    """Control messages a scheduler worker responds to."""
    PAUSE = "pause"
    RESUME = "resume"
    TERMINATE = "terminate"
    INTERRUPT = "interrupt"
    QUIT = "quit"
    KILL_CURRENT = "kill_current"


SHUTDOWN_SIGNALS = frozenset({
    ControlSignal.TERMINATE,
    ControlSignal.INTERRUPT,
    ControlSignal.QUIT,
    ControlSignal.KILL_CURRENT,
})


@dataclass(frozen=True)
class DelayedJob:
    """
    A job waiting in the delayed queue until it becomes due.

    Attributes:
        queue: Name of the work queue the job is pushed to once due
        job_class: Name of the job type the consumer runs
        args: Arguments handed to the job, in order
        due_at: Epoch seconds at which the job becomes due
    """
    queue: str
    job_class: str
    args: Tuple[Any, ...] = ()
    due_at: int = 0

    def to_payload(self) -> Dict[str, Any]:
        """
        Wire form stored in a delayed bucket. The due time is the bucket key.

        As in resque-scheduler, the argument list is wrapped in a one
        element list.
        """
        return {'queue': self.queue, 'class': self.job_class, 'args': [list(self.args)]}

    def encode(self) -> str:
        """
        Serialize the job deterministically.

        Identical jobs always encode to identical strings, which is what
        store level removal matches on.
        """
        return json.dumps(self.to_payload(), sort_keys=True, separators=(',', ':'))

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], due_at: int) -> "DelayedJob":
        wrapped = payload.get('args') or [[]]
        args = wrapped[0]
        if isinstance(args, dict):
            # Producers that pass one associative array of arguments
            args = [args]
        return cls(
            queue=payload['queue'],
            job_class=payload['class'],
            args=tuple(args or ()),
            due_at=due_at,
        )

    @classmethod
    def decode(cls, raw: Union[str, bytes], due_at: int) -> "DelayedJob":
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        return cls.from_payload(json.loads(raw), due_at)

    def matches(self, queue: str, job_class: str, args: Sequence[Any]) -> bool:
        """Check whether this job has the given queue, class and arguments."""
        return (
            self.queue == queue
            and self.job_class == job_class
            and list(self.args) == list(args)
        )


def to_timestamp(value: Union[int, datetime]) -> int:
    """
    Convert a due time to integer epoch seconds.

    Args:
        value: Epoch seconds or a datetime (naive datetimes are treated as UTC)

    Returns:
        Epoch seconds

    Raises:
        ScheduleValidationError: If the value is neither
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, bool) or not isinstance(value, int):
        raise ScheduleValidationError(
            f"Due time must be epoch seconds or a datetime, got {type(value).__name__}"
        )
    if value < 0:
        raise ScheduleValidationError(f"Due time cannot be negative, got {value}")
    return value


def build_job(
    due_at: Union[int, datetime],
    queue: str,
    job_class: str,
    args: Optional[Sequence[Any]] = None
) -> DelayedJob:
    """
    Validate producer input and build a delayed job.

    Args:
        due_at: When the job becomes due
        queue: Destination work queue
        job_class: Job type name
        args: Job arguments; must be JSON serializable

    Returns:
        The validated job

    Raises:
        ScheduleValidationError: If any field is malformed
    """
    timestamp = to_timestamp(due_at)
    args = validate_job_fields(queue, job_class, args)
    return DelayedJob(queue=queue, job_class=job_class, args=args, due_at=timestamp)


def validate_job_fields(
    queue: str,
    job_class: str,
    args: Optional[Sequence[Any]] = None
) -> Tuple[Any, ...]:
    """Check the shape of a job's queue, class and arguments; returns the arguments."""
    if not isinstance(queue, str) or not queue:
        raise ScheduleValidationError("Queue name must be a non-empty string")
    if not isinstance(job_class, str) or not job_class:
        raise ScheduleValidationError("Job class must be a non-empty string")
    if args is None:
        args = ()
    if not isinstance(args, (list, tuple)):
        raise ScheduleValidationError(
            f"Job arguments must be a list, got {type(args).__name__}"
        )
    try:
        json.dumps(list(args))
    except (TypeError, ValueError) as e:
        raise ScheduleValidationError(f"Job arguments are not serializable: {e}") from e
    return tuple(args)


@dataclass
class WorkerSettings:
    """
    Configuration for a scheduler worker process.

    Attributes:
        redis_url: Redis holding the delayed queue (and the work queue)
        namespace: Key prefix shared with the work queue consumers
        interval: Seconds to sleep between checks for due jobs
        log_level: Logging level name
        work_queue_url: When set, due jobs are posted to this HTTP gateway
            instead of being pushed to Redis
    """
    redis_url: str = "redis://localhost:6379/0"
    namespace: str = "resque"
    interval: float = 5.0
    log_level: str = "INFO"
    work_queue_url: Optional[str] = None

    def __post_init__(self):
        """Validate settings."""
        if self.interval <= 0:
            raise ValueError(f"Interval must be positive, got {self.interval}")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "WorkerSettings":
        """
        Build settings from environment variables.

        Reads REDIS_URL, RESQUE_NAMESPACE, SCHEDULER_INTERVAL, LOG_LEVEL
        and WORK_QUEUE_URL; anything unset keeps its default.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            redis_url=env.get('REDIS_URL', defaults.redis_url),
            namespace=env.get('RESQUE_NAMESPACE', defaults.namespace),
            interval=float(env.get('SCHEDULER_INTERVAL', defaults.interval)),
            log_level=env.get('LOG_LEVEL', defaults.log_level).upper(),
            work_queue_url=env.get('WORK_QUEUE_URL') or None,
        )
