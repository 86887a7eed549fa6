"""
Unit tests for pre-dispatch hooks.
"""

import pytest

from delayed_scheduler.hooks import DispatchHooks
from delayed_scheduler.types import DelayedJob, HookFailure


JOB = DelayedJob("emails", "Welcome", (1,), 100)


class TestDispatchHooks:
    """Test hook registration and notification."""

    def test_hooks_run_in_order(self):
        """Hooks are called in registration order with the job's details."""
        seen = []
        hooks = DispatchHooks([lambda e: seen.append(("first", e))])
        hooks.register(lambda e: seen.append(("second", e)))

        hooks.notify(JOB)

        event = {'queue': 'emails', 'class': 'Welcome', 'args': [1]}
        assert seen == [("first", event), ("second", event)]

    def test_register_as_decorator(self):
        hooks = DispatchHooks()

        @hooks.register
        def audit(event):
            pass

        assert len(hooks) == 1
        assert audit is not None

    def test_unregister(self):
        hooks = DispatchHooks()
        hook = hooks.register(lambda e: None)

        assert hooks.unregister(hook) is True
        assert hooks.unregister(hook) is False
        assert len(hooks) == 0

    def test_failure_stops_remaining_hooks(self):
        """A failing hook raises HookFailure and later hooks are not called."""
        later = []

        def broken(event):
            raise RuntimeError("observer down")

        hooks = DispatchHooks([broken, later.append])

        with pytest.raises(HookFailure) as exc_info:
            hooks.notify(JOB)

        assert later == []
        assert exc_info.value.job == JOB
        assert exc_info.value.hook is broken
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "broken" in str(exc_info.value)

    def test_no_hooks(self):
        DispatchHooks().notify(JOB)
