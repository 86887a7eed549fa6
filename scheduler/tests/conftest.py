"""
Shared fixtures for the delayed scheduler tests.
"""

import pytest

from delayed_scheduler.control import WorkerControl
from delayed_scheduler.delayed_queue import InMemoryDelayedQueue
from delayed_scheduler.hooks import DispatchHooks
from delayed_scheduler.scheduler import SchedulerLoop
from delayed_scheduler.work_queue import WorkQueue

T = 1_700_000_000


class RecordingWorkQueue(WorkQueue):
    """Work queue that records every enqueue call."""

    def __init__(self):
        self.calls = []
        self.failing_classes = set()
        self.after_enqueue = None

    async def enqueue(self, queue, job_class, args, track_status=False):
        self.calls.append((queue, job_class, list(args), track_status))
        if self.after_enqueue is not None:
            self.after_enqueue(len(self.calls))
        if job_class in self.failing_classes:
            raise ConnectionError("work queue unavailable")
        return f"job-{len(self.calls)}"


class FakeClock:
    """Settable epoch clock."""

    def __init__(self, now=T):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def delayed_queue():
    return InMemoryDelayedQueue()


@pytest.fixture
def work_queue():
    return RecordingWorkQueue()


@pytest.fixture
def control():
    return WorkerControl()


@pytest.fixture
def hooks():
    return DispatchHooks()


@pytest.fixture
def scheduler_loop(delayed_queue, work_queue, control, hooks, clock):
    return SchedulerLoop(
        delayed_queue, work_queue, control=control, hooks=hooks, interval=0.01, clock=clock
    )
