"""
Delayed Job Scheduler Package

Holds jobs scheduled for a future time in a time-ordered backlog and
pushes them onto an immediate work queue once they become due.
"""

import logging

__version__ = '0.1.0'

logging.getLogger(__name__).addHandler(logging.NullHandler())

from .types import (
    DelayedJob,
    ControlState,
    ControlSignal,
    WorkerSettings,
    DelayedSchedulerError,
    ScheduleValidationError,
    HookFailure,
)

from .delayed_queue import DelayedQueue, InMemoryDelayedQueue, RedisDelayedQueue
from .hooks import DispatchHooks
from .control import WorkerControl
from .work_queue import WorkQueue, RedisWorkQueue, HttpWorkQueue
from .api import DelayedScheduler
from .scheduler import SchedulerLoop, run_worker
from .server import create_app, run_server

__all__ = [
    'DelayedJob',
    'ControlState',
    'ControlSignal',
    'WorkerSettings',
    'DelayedSchedulerError',
    'ScheduleValidationError',
    'HookFailure',
    'DelayedQueue',
    'InMemoryDelayedQueue',
    'RedisDelayedQueue',
    'DispatchHooks',
    'WorkerControl',
    'WorkQueue',
    'RedisWorkQueue',
    'HttpWorkQueue',
    'DelayedScheduler',
    'SchedulerLoop',
    'run_worker',
    'create_app',
    'run_server',
]
