"""
Pre-dispatch hooks.

Hooks observe every claimed job right before it is handed to the work
queue. They run synchronously, in registration order.
"""

from typing import Any, Callable, Dict, List, Optional

from .types import DelayedJob, HookFailure

DispatchHook = Callable[[Dict[str, Any]], Any]


class DispatchHooks:
    """
    Ordered list of observers notified before a delayed job is enqueued.

    A hook receives a dict with the job's ``queue``, ``class`` and
    ``args``. A failing hook aborts the dispatch of that one job only.
    """

    def __init__(self, hooks: Optional[List[DispatchHook]] = None):
        self._hooks: List[DispatchHook] = list(hooks or [])

    def register(self, hook: DispatchHook) -> DispatchHook:
        """Append a hook. Returns it so the method works as a decorator."""
        self._hooks.append(hook)
        return hook

    def unregister(self, hook: DispatchHook) -> bool:
        try:
            self._hooks.remove(hook)
        except ValueError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._hooks)

    def notify(self, job: DelayedJob) -> None:
        """
        Invoke every hook for a job about to be enqueued.

        Args:
            job: The claimed job

        Raises:
            HookFailure: If a hook raises; the remaining hooks are not called
        """
        event = {'queue': job.queue, 'class': job.job_class, 'args': list(job.args)}
        for hook in self._hooks:
            try:
                hook(event)
            except Exception as e:
                raise HookFailure(job, hook, e) from e
