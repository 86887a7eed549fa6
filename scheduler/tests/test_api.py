"""
Unit tests for the producer API.
"""

import math
from datetime import datetime, timezone

import pytest

from delayed_scheduler.api import DelayedScheduler
from delayed_scheduler.types import DelayedJob, ScheduleValidationError

T = 1_700_000_000


@pytest.fixture
def producer(delayed_queue, clock):
    return DelayedScheduler(delayed_queue, clock=clock)


@pytest.mark.asyncio
class TestScheduling:
    """Test scheduling jobs."""

    async def test_schedule_at(self, producer, delayed_queue):
        due_at = await producer.schedule_at(T + 60, "emails", "Welcome", [1])

        assert due_at == T + 60
        assert await delayed_queue.claim_one(T + 60) == DelayedJob("emails", "Welcome", (1,), T + 60)

    async def test_schedule_at_datetime(self, producer, delayed_queue):
        when = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

        assert await producer.schedule_at(when, "emails", "Welcome") == T
        assert await delayed_queue.timestamp_size(T) == 1

    async def test_schedule_in(self, producer, clock):
        """Delays are relative to the clock; fractions are truncated to seconds."""
        assert await producer.schedule_in(30, "emails", "Welcome", [1]) == T + 30
        assert await producer.schedule_in(2.7, "emails", "Welcome", [1]) == T + 2

    async def test_duplicates_are_kept(self, producer):
        await producer.schedule_at(T, "emails", "Welcome", [1])
        await producer.schedule_at(T, "emails", "Welcome", [1])

        assert await producer.timestamp_size(T) == 2
        assert await producer.size() == 2

    async def test_invalid_job_stores_nothing(self, producer):
        """A rejected job leaves the delayed queue untouched."""
        with pytest.raises(ScheduleValidationError):
            await producer.schedule_at(T, "", "Welcome", [1])
        with pytest.raises(ScheduleValidationError):
            await producer.schedule_in("soon", "emails", "Welcome", [1])

        assert await producer.size() == 0

    @pytest.mark.parametrize("delay", [math.inf, -math.inf, math.nan])
    async def test_non_finite_delay_rejected(self, producer, delay):
        """Infinite or NaN delays are a validation error, not an overflow."""
        with pytest.raises(ScheduleValidationError):
            await producer.schedule_in(delay, "emails", "Welcome", [1])

        assert await producer.size() == 0

    async def test_next_due_at(self, producer):
        assert await producer.next_due_at() is None

        await producer.schedule_at(T + 5, "emails", "Welcome")
        await producer.schedule_at(T + 1, "emails", "Welcome")

        assert await producer.next_due_at() == T + 1


@pytest.mark.asyncio
class TestRemoval:
    """Test retracting scheduled jobs."""

    async def test_remove_matching(self, producer):
        """Only jobs with the same class, arguments and queue are removed."""
        await producer.schedule_at(T, "emails", "Welcome", [1])
        await producer.schedule_at(T + 10, "emails", "Welcome", [1])
        await producer.schedule_at(T, "emails", "Welcome", [2])
        await producer.schedule_at(T, "sms", "Welcome", [1])
        await producer.schedule_at(T, "emails", "Goodbye", [1])

        removed = await producer.remove_matching("Welcome", [1], "emails")

        assert removed == 2
        assert await producer.size() == 3

    async def test_remove_matching_none(self, producer):
        await producer.schedule_at(T, "emails", "Welcome", [1])

        assert await producer.remove_matching("Welcome", [9], "emails") == 0
        assert await producer.size() == 1

    async def test_remove_matching_validates(self, producer):
        with pytest.raises(ScheduleValidationError):
            await producer.remove_matching(None, [1], "emails")

    async def test_remove_from_timestamp(self, producer):
        await producer.schedule_at(T, "emails", "Welcome", [1])
        await producer.schedule_at(T + 10, "emails", "Welcome", [1])

        assert await producer.remove_from_timestamp(T, "emails", "Welcome", [1]) == 1
        assert await producer.next_due_at() == T + 10
