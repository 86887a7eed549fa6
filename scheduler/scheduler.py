#!/usr/bin/env python3
"""
Delayed Job Scheduler worker

Configured from the environment (REDIS_URL, RESQUE_NAMESPACE,
SCHEDULER_INTERVAL, LOG_LEVEL, WORK_QUEUE_URL).

Signals:
    TERM, INT, QUIT, USR1  shut down after the current job
    USR2                   pause
    CONT                   resume
"""
from delayed_scheduler import WorkerSettings, run_worker

if __name__ == '__main__':
    run_worker(WorkerSettings.from_env())
